"""
Unit tests for FiscalService (drafts and Focus NFe flow)

Author: Backoffice API team
Date: 2026-02-13
"""
from unittest.mock import AsyncMock, MagicMock

import pytest

from backoffice.connectors.focus_nfe_connector import FocusNFeConnector, FocusResult
from backoffice.core.errors import IntegrationError, NotFoundError, ValidationError
from backoffice.domain.fiscal import DraftCreate, FiscalInvoice, FiscalInvoiceItem, FiscalSettings
from backoffice.services.fiscal_service import (
    IBGE_NOT_FOUND_WARNING, FiscalService, build_focus_payload, determine_cfop, missing_recipient_fields,
)

TENANT = "11111111-1111-1111-1111-111111111111"

FISCAL = FiscalSettings(
    tenant_id=TENANT, razao_social="Loja Exemplo LTDA", cnpj="12.345.678/0001-90",
    endereco_uf="SP", csosn_padrao="102", numero_nfe_atual=41, serie_nfe=1,
)

ORDER = {
    'id': "order-1", 'total': 130.0, 'subtotal': 120.0, 'shipping_total': 10.0, 'discount_total': 0,
    'customer_full_name': "Maria Silva", 'customer_cpf': "123.456.789-09",
    'customer_email': "maria@loja.com.br", 'customer_phone': "(11) 99999-8888",
    'shipping_street': "Rua das Flores", 'shipping_number': None, 'shipping_neighborhood': "Centro",
    'shipping_city': "Rio de Janeiro", 'shipping_state': "RJ", 'shipping_postal_code': "20040-020",
}

ORDER_ITEMS = [
    {'id': "oi-1", 'product_id': 7, 'sku': "CAM-P", 'product_name': "Camiseta P",
     'quantity': 2, 'unit_price': 60.0, 'total_price': 120.0},
]


def make_invoice(**overrides) -> FiscalInvoice:
    data = {
        'id': "inv-1", 'tenant_id': TENANT, 'order_id': "order-1", 'status': "draft", 'numero': 41,
        'valor_total': 130.0, 'valor_produtos': 120.0, 'valor_frete': 10.0,
        'dest_nome': "Maria Silva", 'dest_cpf_cnpj': "12345678909",
        'dest_endereco_logradouro': "Rua das Flores", 'dest_endereco_bairro': "Centro",
        'dest_endereco_municipio': "Rio de Janeiro", 'dest_endereco_uf': "RJ",
        'dest_endereco_cep': "20040-020", 'dest_endereco_municipio_codigo': "3304557",
        'items': [FiscalInvoiceItem(
            numero_item=1, codigo_produto="CAM-P", descricao="Camiseta P", ncm="61091000",
            cfop="6102", quantidade=2, valor_unitario=60.0, valor_total=120.0,
        )],
    }
    data.update(overrides)
    return FiscalInvoice(**data)


@pytest.fixture
def repo():
    repo = MagicMock()
    repo.get_settings.return_value = FISCAL
    repo.find_order.return_value = dict(ORDER)
    repo.find_order_items.return_value = list(ORDER_ITEMS)
    repo.find_fiscal_products.return_value = {"7": {'product_id': 7, 'ncm': "61091000"}}
    repo.lookup_ibge_code.return_value = "3304557"
    repo.find_draft_id.return_value = None
    repo.save_draft.side_effect = lambda tenant_id, draft, items, existing_id=None: FiscalInvoice(
        id=existing_id or "inv-1", tenant_id=tenant_id, items=items,
        **{k: v for k, v in draft.items() if k != 'emitido_por'}
    )
    repo.find_invoice.return_value = make_invoice()
    return repo


@pytest.fixture
def connector():
    connector = FocusNFeConnector("focus-token")
    connector.send_nfe = AsyncMock()
    connector.get_nfe = AsyncMock()
    connector.cancel_nfe = AsyncMock()
    return connector


@pytest.fixture
def service(repo, connector):
    return FiscalService(repo=repo, connector_factory=lambda fiscal: connector)


class TestHelpers:

    def test_determine_cfop(self):
        assert determine_cfop("SP", "sp") == "5102"
        assert determine_cfop("SP", "RJ") == "6102"
        assert determine_cfop("SP", "RJ", inter="6108") == "6108"

    def test_missing_recipient_fields(self):
        invoice = make_invoice(dest_endereco_bairro="  ", dest_endereco_cep="-")

        assert missing_recipient_fields(invoice) == ["Bairro do destinatário", "CEP do destinatário"]

    def test_build_focus_payload(self):
        payload = build_focus_payload(make_invoice(dest_telefone="(21) 3333-4444"), FISCAL)

        assert payload['cnpj_emitente'] == "12345678000190"
        assert payload['cpf_destinatario'] == "12345678909"
        assert 'cnpj_destinatario' not in payload
        assert payload['numero_destinatario'] == "S/N"
        assert payload['cep_destinatario'] == "20040020"
        assert payload['telefone_destinatario'] == "2133334444"
        assert payload['modalidade_frete'] == 0
        item = payload['items'][0]
        assert item['codigo_ncm'] == "61091000"
        assert item['icms_situacao_tributaria'] == "102"
        assert item['pis_situacao_tributaria'] == "07"


class TestCreateDraft:

    def test_creates_draft_with_interstate_cfop(self, service, repo, tenant_ctx):
        # Act
        result = service.create_draft(tenant_ctx, DraftCreate(order_id="order-1"))

        # Assert
        draft, items = repo.save_draft.call_args[0][1:3]
        assert draft['cfop'] == "6102"
        assert draft['numero'] == 41
        assert draft['dest_cpf_cnpj'] == "12345678909"
        assert draft['dest_endereco_numero'] == "S/N"
        assert draft['dest_endereco_municipio_codigo'] == "3304557"
        assert items[0].cfop == "6102"
        assert items[0].csosn == "102"
        assert result['warnings'] == []
        assert result['emitente']['cnpj'] == FISCAL.cnpj
        assert repo.add_event.call_args[0][2] == "draft_created"

    def test_existing_draft_is_overwritten(self, service, repo, tenant_ctx):
        repo.find_draft_id.return_value = "inv-9"

        result = service.create_draft(tenant_ctx, DraftCreate(order_id="order-1"))

        assert repo.save_draft.call_args[1]['existing_id'] == "inv-9"
        assert result['invoice']['id'] == "inv-9"
        assert repo.add_event.call_args[0][2] == "draft_updated"

    def test_missing_ibge_is_a_warning(self, service, repo, tenant_ctx):
        repo.lookup_ibge_code.return_value = None

        result = service.create_draft(tenant_ctx, DraftCreate(order_id="order-1"))

        assert result['warnings'] == [IBGE_NOT_FOUND_WARNING]

    def test_missing_ncm_blocks_draft(self, service, repo, tenant_ctx):
        repo.find_fiscal_products.return_value = {}

        with pytest.raises(ValidationError) as exc:
            service.create_draft(tenant_ctx, DraftCreate(order_id="order-1"))

        assert exc.value.details == {'products': ["Camiseta P"]}
        repo.save_draft.assert_not_called()

    def test_requires_fiscal_settings(self, service, repo, tenant_ctx):
        repo.get_settings.return_value = None

        with pytest.raises(ValidationError):
            service.create_draft(tenant_ctx, DraftCreate(order_id="order-1"))

    def test_order_without_items(self, service, repo, tenant_ctx):
        repo.find_order_items.return_value = []

        with pytest.raises(ValidationError):
            service.create_draft(tenant_ctx, DraftCreate(order_id="order-1"))


class TestEmit:

    @pytest.mark.asyncio
    async def test_authorized_on_submit(self, service, repo, connector, tenant_ctx):
        connector.send_nfe.return_value = FocusResult(success=True, data={
            'status': "autorizado", 'numero': "41", 'chave_nfe': "NFe3526...", 'protocolo': "135260000000001",
            'caminho_danfe': "/arquivos/danfe.pdf",
        })

        result = await service.emit(tenant_ctx, "inv-1")

        assert result['status'] == "authorized"
        invoice, changes = repo.mark_authorized.call_args[0]
        assert changes['danfe_url'] == "https://homologacao.focusnfe.com.br/arquivos/danfe.pdf"
        assert changes['numero'] == 41
        assert repo.mark_authorized.call_args[1]['next_numero'] == 42
        assert repo.add_event.call_args[0][2] == "authorized"

    @pytest.mark.asyncio
    async def test_processing_stays_pending(self, service, repo, connector, tenant_ctx):
        connector.send_nfe.return_value = FocusResult(success=True, data={'status': "processando_autorizacao"})

        result = await service.emit(tenant_ctx, "inv-1")

        assert result == {
            'success': True, 'status': "pending", 'focus_status': "processando_autorizacao",
            'chave_acesso': None, 'numero': None, 'serie': None, 'protocolo': None, 'mensagem': None,
        }
        assert repo.update_invoice.call_args[0][1]['status'] == "pending"
        assert repo.add_event.call_args[0][2] == "submitted"

    @pytest.mark.asyncio
    async def test_transport_failure_marks_rejected(self, service, repo, connector, tenant_ctx):
        connector.send_nfe.return_value = FocusResult(success=False, error="Token inválido")

        with pytest.raises(IntegrationError) as exc:
            await service.emit(tenant_ctx, "inv-1")

        assert exc.value.message == "Token inválido"
        assert repo.update_invoice.call_args[0][1] == {'status': "rejected", 'last_error': "Token inválido"}

    @pytest.mark.asyncio
    async def test_only_draft_or_rejected(self, service, repo, tenant_ctx):
        repo.find_invoice.return_value = make_invoice(status="authorized")

        with pytest.raises(ValidationError) as exc:
            await service.emit(tenant_ctx, "inv-1")

        assert exc.value.code == "INVALID_STATUS"

    @pytest.mark.asyncio
    async def test_missing_address_fields(self, service, repo, connector, tenant_ctx):
        repo.find_invoice.return_value = make_invoice(dest_endereco_logradouro=None)

        with pytest.raises(ValidationError) as exc:
            await service.emit(tenant_ctx, "inv-1")

        assert exc.value.details == {'missing': ["Logradouro do destinatário"]}
        connector.send_nfe.assert_not_called()

    @pytest.mark.asyncio
    async def test_unknown_invoice(self, service, repo, tenant_ctx):
        repo.find_invoice.return_value = None

        with pytest.raises(NotFoundError):
            await service.emit(tenant_ctx, "nope")


class TestStatusAndCancel:

    @pytest.mark.asyncio
    async def test_status_of_settled_invoice_skips_focus(self, service, repo, connector, tenant_ctx):
        repo.find_invoice.return_value = make_invoice(status="authorized", chave_acesso="NFe35")

        result = await service.get_status(tenant_ctx, "inv-1")

        assert result['message'] == "NF-e autorizada"
        connector.get_nfe.assert_not_called()

    @pytest.mark.asyncio
    async def test_status_query_failure_is_returned(self, service, repo, connector, tenant_ctx):
        repo.find_invoice.return_value = make_invoice(status="pending")
        connector.get_nfe.return_value = FocusResult(success=False, error="HTTP 500")

        result = await service.get_status(tenant_ctx, "inv-1")

        assert result == {'success': False, 'status': "pending", 'error': "HTTP 500"}
        assert repo.update_invoice.call_args[0][1] == {'last_error': "HTTP 500"}

    @pytest.mark.asyncio
    async def test_status_rejected_by_sefaz(self, service, repo, connector, tenant_ctx):
        repo.find_invoice.return_value = make_invoice(status="pending")
        connector.get_nfe.return_value = FocusResult(success=True, data={
            'status': "erro_autorizacao", 'mensagem_sefaz': "Rejeição: CEP inválido",
        })

        result = await service.get_status(tenant_ctx, "inv-1")

        assert result['success'] is False
        assert repo.update_invoice.call_args[0][1]['last_error'] == "Rejeição: CEP inválido"
        assert repo.add_event.call_args[0][2] == "rejected"

    @pytest.mark.asyncio
    async def test_cancel_authorized(self, service, repo, connector, tenant_ctx):
        repo.find_invoice.return_value = make_invoice(status="authorized")
        connector.cancel_nfe.return_value = FocusResult(success=True, data={'mensagem_sefaz': "Evento registrado"})

        result = await service.cancel(tenant_ctx, "inv-1", "  Pedido cancelado pelo cliente  ")

        assert result == {'success': True, 'status': "cancelled"}
        assert connector.cancel_nfe.await_args[0][1] == "Pedido cancelado pelo cliente"
        assert repo.update_invoice.call_args[0][1]['status'] == "cancelled"

    @pytest.mark.asyncio
    async def test_cancel_requires_authorized(self, service, repo, tenant_ctx):
        with pytest.raises(ValidationError):
            await service.cancel(tenant_ctx, "inv-1", "Pedido cancelado pelo cliente")

    @pytest.mark.asyncio
    async def test_cancel_justification_length(self, service, repo, tenant_ctx):
        with pytest.raises(ValidationError) as exc:
            await service.cancel(tenant_ctx, "inv-1", "curta")

        assert exc.value.details == {'field': "justificativa"}
        repo.find_invoice.assert_not_called()

    @pytest.mark.asyncio
    async def test_cancel_rejected_by_focus(self, service, repo, connector, tenant_ctx):
        repo.find_invoice.return_value = make_invoice(status="authorized")
        connector.cancel_nfe.return_value = FocusResult(success=False, error="Prazo de cancelamento expirado")

        with pytest.raises(IntegrationError):
            await service.cancel(tenant_ctx, "inv-1", "Pedido cancelado pelo cliente")

        assert repo.add_event.call_args[0][2] == "cancel_failed"
