"""Gestão de frota: ordens de serviço, requisições de peças e triagem."""

__version__ = "0.1.0"
