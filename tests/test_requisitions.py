import pytest
from sqlmodel import Session

from fleet_service.errors import (
    RequisitionItemNotFoundError,
    RequisitionNotFoundError,
    ValidationError,
    WriteConflictError,
)
from fleet_service.models import (
    PartsRequisition,
    RequisitionItemStatus as Item,
    RequisitionStatus,
)
from fleet_service.requisitions import (
    aggregate_requisition_status,
    apply_triage,
    create_requisition,
    delete_requisition,
    list_requisitions,
    load_requisition,
    record_warehouse_action,
    set_item_image,
    triage_item,
    update_requisition,
)
from fleet_service.schemas import RequisitionItemCreate
from fleet_service.service_orders import cancel_service_order
from fleet_service.transactions import run_transaction


def _reload(engine, requisition_id) -> PartsRequisition:
    with Session(engine) as session:
        return session.get(PartsRequisition, requisition_id)


class TestAggregateStatus:
    """Status da requisição derivado dos itens."""

    @pytest.mark.parametrize("statuses", [
        [],
        [Item.PENDING_APPROVAL],
        [Item.APPROVED, Item.PENDING_APPROVAL],
        [Item.REFUSED, Item.DELIVERED, Item.PENDING_APPROVAL],
    ])
    def test_pendente_enquanto_houver_item_pendente(self, statuses):
        assert aggregate_requisition_status(statuses) is RequisitionStatus.PENDING

    @pytest.mark.parametrize("statuses", [
        [Item.APPROVED],
        [Item.REFUSED],
        [Item.APPROVED, Item.REFUSED, Item.SEPARATED],
        ["Aguardando Compra", "Entregue"],
    ])
    def test_triagem_realizada_sem_itens_pendentes(self, statuses):
        assert aggregate_requisition_status(statuses) is RequisitionStatus.TRIAGED


class TestCreateRequisition:

    def test_numeracao_e_itens_pendentes(self, make_requisition):
        first = make_requisition()
        second = make_requisition(part_names=("Bateria",))
        assert first.requisition_number == "REQ-0001"
        assert second.requisition_number == "REQ-0002"
        assert first.status is RequisitionStatus.PENDING
        assert {item.status for item in first.parsed_items()} == {Item.PENDING_APPROVAL}
        assert len({item.id for item in first.parsed_items()}) == 3

    def test_rejeita_os_encerrada(self, engine, seed, make_order):
        order = make_order()
        cancel_service_order(engine, order.id)
        with pytest.raises(ValidationError) as excinfo:
            create_requisition(engine, order.id, seed.technician_id,
                               [RequisitionItemCreate(part_name="Filtro")])
        assert excinfo.value.field == "service_order_id"

    def test_rejeita_tecnico_inexistente(self, engine, make_order):
        order = make_order()
        with pytest.raises(ValidationError):
            create_requisition(engine, order.id, 999, [RequisitionItemCreate(part_name="Filtro")])

    def test_rejeita_lista_vazia(self, engine, seed, make_order):
        order = make_order()
        with pytest.raises(ValidationError):
            create_requisition(engine, order.id, seed.technician_id, [])


class TestTriage:
    """Triagem de itens: cada decisão recalcula o status da requisição."""

    def test_fluxo_completo_de_triagem(self, engine, make_requisition):
        requisition = make_requisition()
        first, second, third = (item.id for item in requisition.parsed_items())

        result = triage_item(engine, requisition.id, first, Item.APPROVED)
        assert result.status is RequisitionStatus.PENDING

        result = triage_item(engine, requisition.id, second, Item.REFUSED, notes="Sem estoque")
        assert result.status is RequisitionStatus.PENDING

        result = triage_item(engine, requisition.id, third, Item.REFUSED)
        assert result.status is RequisitionStatus.TRIAGED

        stored = _reload(engine, requisition.id)
        assert stored.status is RequisitionStatus.TRIAGED
        items = {item.id: item for item in stored.parsed_items()}
        assert items[first].status is Item.APPROVED
        assert items[second].status is Item.REFUSED
        assert items[second].triage_notes == "Sem estoque"
        assert items[third].status is Item.REFUSED
        assert items[third].triage_notes is None

    def test_repetir_a_mesma_decisao_nao_muda_nada(self, engine, make_requisition):
        requisition = make_requisition(part_names=("Correia",))
        item_id = requisition.parsed_items()[0].id
        once = triage_item(engine, requisition.id, item_id, Item.APPROVED, notes="ok")
        twice = triage_item(engine, requisition.id, item_id, Item.APPROVED)
        assert twice.items == once.items
        assert twice.status is RequisitionStatus.TRIAGED

    def test_observacao_anterior_e_mantida_sem_nova_observacao(self, engine, make_requisition):
        requisition = make_requisition(part_names=("Correia",))
        item_id = requisition.parsed_items()[0].id
        triage_item(engine, requisition.id, item_id, Item.APPROVED, notes="Urgente")
        result = triage_item(engine, requisition.id, item_id, Item.REFUSED)
        item = result.parsed_items()[0]
        assert item.status is Item.REFUSED
        assert item.triage_notes == "Urgente"

    def test_requisicao_inexistente(self, engine):
        with pytest.raises(RequisitionNotFoundError):
            triage_item(engine, 999, "qualquer", Item.APPROVED)

    def test_item_inexistente_nao_grava_nada(self, engine, make_requisition):
        requisition = make_requisition()
        with pytest.raises(RequisitionItemNotFoundError):
            triage_item(engine, requisition.id, "nao-existe", Item.APPROVED)
        stored = _reload(engine, requisition.id)
        assert stored.version == requisition.version
        assert stored.items == requisition.items

    def test_nao_volta_para_pendente(self, engine, make_requisition):
        requisition = make_requisition()
        item_id = requisition.parsed_items()[0].id
        with pytest.raises(ValidationError):
            triage_item(engine, requisition.id, item_id, Item.PENDING_APPROVAL)

    @pytest.mark.parametrize("target", [Item.AWAITING_PURCHASE, Item.SEPARATED, Item.DELIVERED])
    def test_triagem_so_aprova_ou_recusa(self, engine, make_requisition, target):
        requisition = make_requisition(part_names=("Filtro", "Correia"))
        pending, refused = (item.id for item in requisition.parsed_items())
        triage_item(engine, requisition.id, refused, Item.REFUSED)

        for item_id in (pending, refused):
            with pytest.raises(ValidationError) as excinfo:
                triage_item(engine, requisition.id, item_id, target)
            assert excinfo.value.field == "status"

        stored = _reload(engine, requisition.id)
        statuses = {item.id: item.status for item in stored.parsed_items()}
        assert statuses == {pending: Item.PENDING_APPROVAL, refused: Item.REFUSED}
        assert stored.status is RequisitionStatus.PENDING

    def test_item_movimentado_pelo_almoxarifado_nao_volta_para_triagem(self, engine,
                                                                       make_requisition):
        requisition = make_requisition(part_names=("Filtro",))
        item_id = requisition.parsed_items()[0].id
        triage_item(engine, requisition.id, item_id, Item.APPROVED)
        record_warehouse_action(engine, requisition.id, item_id, Item.DELIVERED)

        with pytest.raises(ValidationError):
            triage_item(engine, requisition.id, item_id, Item.REFUSED)
        assert _reload(engine, requisition.id).parsed_items()[0].status is Item.DELIVERED

    def test_triagens_simultaneas_nao_se_sobrescrevem(self, engine, make_requisition):
        requisition = make_requisition(part_names=("Filtro", "Correia"))
        first, second = (item.id for item in requisition.parsed_items())
        attempts = []

        def work(tx):
            attempts.append(1)
            current = load_requisition(tx, requisition.id)
            if len(attempts) == 1:
                # Outra triagem grava entre a leitura e a escrita desta
                triage_item(engine, requisition.id, second, Item.REFUSED)
            return apply_triage(tx, current, first, Item.APPROVED)

        result = run_transaction(engine, work)

        assert len(attempts) == 2
        statuses = {item.id: item.status for item in result.parsed_items()}
        assert statuses == {first: Item.APPROVED, second: Item.REFUSED}
        assert result.status is RequisitionStatus.TRIAGED
        assert _reload(engine, requisition.id).version == requisition.version + 2

    def test_conflito_persistente_esgota_tentativas(self, engine, make_requisition):
        requisition = make_requisition(part_names=("Filtro", "Correia"))
        first, second = (item.id for item in requisition.parsed_items())
        decisions = iter([Item.REFUSED, Item.APPROVED, Item.REFUSED])

        def work(tx):
            current = load_requisition(tx, requisition.id)
            triage_item(engine, requisition.id, second, next(decisions))
            return apply_triage(tx, current, first, Item.APPROVED)

        with pytest.raises(WriteConflictError) as excinfo:
            run_transaction(engine, work, max_attempts=2)
        assert excinfo.value.retryable

        stored = _reload(engine, requisition.id)
        statuses = {item.id: item.status for item in stored.parsed_items()}
        assert statuses[first] is Item.PENDING_APPROVAL
        assert statuses[second] is Item.APPROVED


class TestWarehouse:

    def test_movimenta_item_aprovado(self, engine, make_requisition):
        requisition = make_requisition(part_names=("Filtro",))
        item_id = requisition.parsed_items()[0].id
        triage_item(engine, requisition.id, item_id, Item.APPROVED)
        result = record_warehouse_action(engine, requisition.id, item_id, Item.SEPARATED,
                                         warehouse_notes="Prateleira 3", estimated_cost=45.9)
        item = result.parsed_items()[0]
        assert item.status is Item.SEPARATED
        assert item.warehouse_notes == "Prateleira 3"
        assert item.estimated_cost == 45.9
        assert result.status is RequisitionStatus.TRIAGED

    @pytest.mark.parametrize("decision", [None, Item.REFUSED])
    def test_item_pendente_ou_recusado_nao_movimenta(self, engine, make_requisition, decision):
        requisition = make_requisition(part_names=("Filtro",))
        item_id = requisition.parsed_items()[0].id
        if decision is not None:
            triage_item(engine, requisition.id, item_id, decision)
        with pytest.raises(ValidationError):
            record_warehouse_action(engine, requisition.id, item_id, Item.DELIVERED)

    def test_status_de_triagem_nao_e_acao_de_almoxarifado(self, engine, make_requisition):
        requisition = make_requisition(part_names=("Filtro",))
        item_id = requisition.parsed_items()[0].id
        with pytest.raises(ValidationError):
            record_warehouse_action(engine, requisition.id, item_id, Item.APPROVED)


class TestUpdateRequisition:

    def test_nova_peca_reabre_a_triagem(self, engine, make_requisition):
        requisition = make_requisition(part_names=("Filtro",))
        item_id = requisition.parsed_items()[0].id
        triage_item(engine, requisition.id, item_id, Item.APPROVED)

        result = update_requisition(engine, requisition.id, general_notes="Incluir correia",
                                    add_items=[RequisitionItemCreate(part_name=" Correia ", quantity=2)])

        assert result.status is RequisitionStatus.PENDING
        assert result.general_notes == "Incluir correia"
        added = result.parsed_items()[-1]
        assert added.part_name == "Correia"
        assert added.quantity == 2
        assert added.status is Item.PENDING_APPROVAL

    def test_remover_pendente_pode_concluir_a_triagem(self, engine, make_requisition):
        requisition = make_requisition(part_names=("Filtro", "Correia"))
        first, second = (item.id for item in requisition.parsed_items())
        triage_item(engine, requisition.id, first, Item.APPROVED)
        result = update_requisition(engine, requisition.id, remove_item_ids=[second])
        assert [item.id for item in result.parsed_items()] == [first]
        assert result.status is RequisitionStatus.TRIAGED

    def test_nao_remove_peca_triada(self, engine, make_requisition):
        requisition = make_requisition(part_names=("Filtro", "Correia"))
        first = requisition.parsed_items()[0].id
        triage_item(engine, requisition.id, first, Item.REFUSED)
        with pytest.raises(ValidationError):
            update_requisition(engine, requisition.id, remove_item_ids=[first])

    def test_nao_fica_sem_pecas(self, engine, make_requisition):
        requisition = make_requisition(part_names=("Filtro",))
        with pytest.raises(ValidationError):
            update_requisition(engine, requisition.id,
                               remove_item_ids=[requisition.parsed_items()[0].id])


class TestItemImage:

    def test_troca_de_foto_apaga_a_anterior(self, engine, blob_store, make_requisition):
        requisition = make_requisition(part_names=("Filtro",))
        item_id = requisition.parsed_items()[0].id

        first = set_item_image(engine, blob_store, requisition.id, item_id, b"1", "antiga.jpg")
        old_url = first.parsed_items()[0].image_url
        second = set_item_image(engine, blob_store, requisition.id, item_id, b"2", "nova.jpg")
        new_url = second.parsed_items()[0].image_url

        assert new_url.endswith("/nova.jpg")
        assert blob_store.path_for(new_url).exists()
        assert not blob_store.path_for(old_url).exists()
        # A foto não altera o status da requisição
        assert second.status is RequisitionStatus.PENDING

    def test_item_inexistente_nao_deixa_arquivo(self, engine, blob_store, make_requisition):
        requisition = make_requisition(part_names=("Filtro",))
        with pytest.raises(RequisitionItemNotFoundError):
            set_item_image(engine, blob_store, requisition.id, "nao-existe", b"1", "foto.jpg")
        assert not list(blob_store.root.rglob("*.jpg"))

    def test_excluir_requisicao_apaga_fotos(self, engine, blob_store, make_requisition):
        requisition = make_requisition(part_names=("Filtro",))
        item_id = requisition.parsed_items()[0].id
        result = set_item_image(engine, blob_store, requisition.id, item_id, b"1", "foto.jpg")
        url = result.parsed_items()[0].image_url

        with Session(engine) as session:
            delete_requisition(session, blob_store, requisition.id)
            assert list_requisitions(session) == []
        assert not blob_store.path_for(url).exists()


def test_listagem_filtra_por_status(engine, make_requisition):
    pending = make_requisition(part_names=("Filtro",))
    done = make_requisition(part_names=("Correia",))
    triage_item(engine, done.id, done.parsed_items()[0].id, Item.APPROVED)

    with Session(engine) as session:
        queue = list_requisitions(session, RequisitionStatus.PENDING)
        assert [r.id for r in queue] == [pending.id]
        assert {r.id for r in list_requisitions(session)} == {pending.id, done.id}
