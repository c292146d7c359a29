import os

from dotenv import load_dotenv

# Carrega variáveis de ambiente do arquivo .env
load_dotenv()

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///frota.db")

# Armazenamento de arquivos (fotos de peças, mídias da OS)
MEDIA_ROOT = os.getenv("MEDIA_ROOT", "media")
MEDIA_URL = os.getenv("MEDIA_URL", "/media")

# Gemini (estimativa de pedágio) e Google Maps (distância)
GOOGLE_API_KEY = os.getenv("GOOGLE_API_KEY")
GEMINI_MODEL = os.getenv("GEMINI_MODEL", "gemini-flash-latest")
GOOGLE_MAPS_API_KEY = os.getenv("GOOGLE_MAPS_API_KEY")
COMPANY_ORIGIN_ADDRESS = os.getenv("COMPANY_ORIGIN_ADDRESS", "")

TRANSACTION_MAX_ATTEMPTS = int(os.getenv("TRANSACTION_MAX_ATTEMPTS", "5"))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
