"""
Fiscal Service
NF-e drafts built from orders and their submission through Focus NFe

Flow:
    create_draft (order -> fiscal_invoices draft + items)
    emit         (draft/rejected -> Focus NFe -> pending/authorized/rejected)
    get_status   (pending -> query Focus NFe)
    cancel       (authorized -> cancelled)

Every step is recorded in fiscal_invoice_events.

Author: Backoffice API team
Date: 2026-02-13
"""
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from backoffice.connectors.focus_nfe_connector import FocusNFeConnector, map_focus_status
from backoffice.core.auth import TenantContext
from backoffice.core.config import settings as app_settings
from backoffice.core.errors import IntegrationError, NotFoundError, ValidationError
from backoffice.core.text import only_digits
from backoffice.domain.fiscal import (
    DEFAULT_CFOP_INTER, DEFAULT_CFOP_INTRA, DEFAULT_CSOSN, DEFAULT_NATUREZA_OPERACAO,
    DEFAULT_PIS_COFINS_CST, EMITTABLE_STATUSES, DraftCreate, FiscalInvoice,
    FiscalInvoiceItem, FiscalSettings,
)
from backoffice.repositories.fiscal_repository import FiscalRepository

logger = logging.getLogger(__name__)

IBGE_NOT_FOUND_WARNING = "Código IBGE do município de destino não encontrado. Verifique o nome da cidade."

REQUIRED_RECIPIENT_FIELDS = [
    ('dest_endereco_bairro', "Bairro do destinatário"),
    ('dest_endereco_logradouro', "Logradouro do destinatário"),
    ('dest_endereco_municipio', "Cidade do destinatário"),
    ('dest_endereco_uf', "UF do destinatário"),
    ('dest_endereco_cep', "CEP do destinatário"),
]


def determine_cfop(origin_uf: Optional[str], dest_uf: Optional[str],
                   intra: Optional[str] = None, inter: Optional[str] = None) -> str:
    """5102 inside the issuer's state, 6102 across states (unless configured)"""
    if (origin_uf or "").upper() == (dest_uf or "").upper():
        return intra or DEFAULT_CFOP_INTRA
    return inter or DEFAULT_CFOP_INTER


def missing_recipient_fields(invoice: FiscalInvoice) -> List[str]:
    missing = []
    for attr, label in REQUIRED_RECIPIENT_FIELDS:
        value = getattr(invoice, attr)
        if attr == 'dest_endereco_cep':
            value = only_digits(value)
        if not value or not str(value).strip():
            missing.append(label)
    return missing


def build_focus_payload(invoice: FiscalInvoice, fiscal: FiscalSettings) -> Dict[str, Any]:
    """Map an invoice and its items to the Focus NFe /v2/nfe body"""
    document = only_digits(invoice.dest_cpf_cnpj)
    is_cnpj = len(document) == 14

    payload = {
        'natureza_operacao': invoice.natureza_operacao or DEFAULT_NATUREZA_OPERACAO,
        'data_emissao': datetime.now(timezone.utc).isoformat(),
        'tipo_documento': 1,
        'finalidade_emissao': 1,
        'consumidor_final': 1,
        'presenca_comprador': 2,
        'cnpj_emitente': only_digits(fiscal.cnpj),

        'nome_destinatario': invoice.dest_nome or "CONSUMIDOR FINAL",
        'logradouro_destinatario': invoice.dest_endereco_logradouro,
        'numero_destinatario': invoice.dest_endereco_numero or "S/N",
        'bairro_destinatario': invoice.dest_endereco_bairro,
        'municipio_destinatario': invoice.dest_endereco_municipio,
        'uf_destinatario': invoice.dest_endereco_uf,
        'cep_destinatario': only_digits(invoice.dest_endereco_cep),
        'indicador_inscricao_estadual_destinatario': 9,

        'valor_produtos': invoice.valor_produtos,
        'valor_total': invoice.valor_total,
        'valor_frete': invoice.valor_frete,
        'valor_desconto': invoice.valor_desconto,
        'modalidade_frete': 0 if invoice.valor_frete else 9,

        'formas_pagamento': [{'forma_pagamento': "99", 'valor_pagamento': invoice.valor_total}],
        'items': [],
    }

    if document:
        payload['cnpj_destinatario' if is_cnpj else 'cpf_destinatario'] = document
    if invoice.dest_endereco_complemento:
        payload['complemento_destinatario'] = invoice.dest_endereco_complemento
    if invoice.dest_endereco_municipio_codigo:
        payload['codigo_municipio_destinatario'] = invoice.dest_endereco_municipio_codigo
    if invoice.dest_telefone:
        payload['telefone_destinatario'] = only_digits(invoice.dest_telefone)
    if invoice.dest_email:
        payload['email_destinatario'] = invoice.dest_email
    if invoice.observacoes:
        payload['informacoes_adicionais_contribuinte'] = invoice.observacoes

    for index, item in enumerate(invoice.items):
        payload['items'].append({
            'numero_item': item.numero_item or index + 1,
            'codigo_produto': item.codigo_produto,
            'descricao': item.descricao,
            'cfop': item.cfop,
            'unidade_comercial': item.unidade or "UN",
            'quantidade_comercial': item.quantidade,
            'valor_unitario_comercial': item.valor_unitario,
            'valor_bruto': item.valor_total,
            'codigo_ncm': item.ncm,
            'icms_situacao_tributaria': item.csosn or DEFAULT_CSOSN,
            'icms_origem': int(item.origem or 0),
            'pis_situacao_tributaria': DEFAULT_PIS_COFINS_CST,
            'cofins_situacao_tributaria': DEFAULT_PIS_COFINS_CST,
        })

    return payload


def _default_connector_factory(fiscal: FiscalSettings) -> FocusNFeConnector:
    token = fiscal.focus_token or app_settings.FOCUS_NFE_TOKEN
    if not token:
        raise ValidationError("Token Focus NFe não configurado", field="focus_token")
    return FocusNFeConnector(token, ambiente=fiscal.ambiente)


class FiscalService:
    """
    Service for NF-e operations

    Handles:
    - Drafts from orders (CFOP, NCM, recipient snapshot, IBGE code)
    - Submission, status polling and cancellation through Focus NFe
    """

    def __init__(self, repo: FiscalRepository = None, connector_factory: Callable = _default_connector_factory):
        self.repo = repo or FiscalRepository()
        self.connector_factory = connector_factory

    def _settings_or_error(self, tenant_id: str) -> FiscalSettings:
        fiscal = self.repo.get_settings(tenant_id)
        if not fiscal:
            raise ValidationError("Configurações fiscais não encontradas.")
        return fiscal

    def _invoice_or_404(self, ctx: TenantContext, invoice_id: str) -> FiscalInvoice:
        invoice = self.repo.find_invoice(ctx.tenant_id, invoice_id)
        if not invoice:
            raise NotFoundError("NF-e não encontrada.")
        return invoice

    # =========================================================================
    # Draft
    # =========================================================================

    def create_draft(self, ctx: TenantContext, data: DraftCreate) -> Dict[str, Any]:
        fiscal = self._settings_or_error(ctx.tenant_id)

        order = self.repo.find_order(ctx.tenant_id, data.order_id)
        if not order:
            raise NotFoundError("Pedido não encontrado.")

        order_items = self.repo.find_order_items(data.order_id)
        if not order_items:
            raise ValidationError("Pedido sem itens.")

        fiscal_products = self.repo.find_fiscal_products(
            [str(item['product_id']) for item in order_items if item.get('product_id')]
        )

        cfop = determine_cfop(
            fiscal.endereco_uf, order.get('shipping_state'),
            fiscal.cfop_intrastadual, fiscal.cfop_interestadual
        )

        items = []
        for index, item in enumerate(order_items):
            product = fiscal_products.get(str(item.get('product_id'))) or {}
            items.append(FiscalInvoiceItem(
                numero_item=index + 1,
                order_item_id=str(item['id']) if item.get('id') else None,
                codigo_produto=item.get('sku') or f"PROD{index + 1}",
                descricao=item.get('product_name') or "Produto",
                ncm=product.get('ncm') or "",
                cfop=product.get('cfop_override') or cfop,
                unidade=product.get('unidade_comercial') or "UN",
                quantidade=item.get('quantity') or 0,
                valor_unitario=item.get('unit_price') or 0,
                valor_total=item.get('total_price') or 0,
                origem=product.get('origem') or "0",
                csosn=product.get('csosn_override') or fiscal.csosn_padrao,
                cst=product.get('cst_override') or fiscal.cst_padrao,
            ))

        missing_ncm = [item.descricao for item in items if not item.ncm]
        if missing_ncm:
            logger.error(f"Products missing NCM: {missing_ncm}")
            raise ValidationError(
                f"Produtos sem NCM cadastrado: {', '.join(missing_ncm)}. "
                "Configure o NCM em Configurações Fiscais > Produtos.",
                details={'products': missing_ncm}
            )

        ibge_code = self.repo.lookup_ibge_code(order.get('shipping_city'), order.get('shipping_state'))
        if not ibge_code:
            logger.warning(f"IBGE code not found for {order.get('shipping_city')}/{order.get('shipping_state')}")

        draft = {
            'order_id': data.order_id,
            'numero': fiscal.numero_nfe_atual or 1,
            'serie': fiscal.serie_nfe or 1,
            'status': 'draft',
            'natureza_operacao': data.natureza_operacao or DEFAULT_NATUREZA_OPERACAO,
            'cfop': cfop,
            'valor_total': order.get('total') or 0,
            'valor_produtos': order.get('subtotal') or 0,
            'valor_frete': order.get('shipping_total') or 0,
            'valor_desconto': order.get('discount_total') or 0,
            'dest_nome': order.get('customer_full_name') or order.get('customer_name') or "Cliente",
            'dest_cpf_cnpj': only_digits(order.get('customer_cnpj') or order.get('customer_cpf')),
            'dest_telefone': order.get('customer_phone'),
            'dest_email': order.get('customer_email'),
            'dest_endereco_logradouro': order.get('shipping_street'),
            'dest_endereco_numero': order.get('shipping_number') or "S/N",
            'dest_endereco_complemento': order.get('shipping_complement'),
            'dest_endereco_bairro': order.get('shipping_neighborhood'),
            'dest_endereco_municipio': order.get('shipping_city'),
            'dest_endereco_municipio_codigo': ibge_code,
            'dest_endereco_uf': order.get('shipping_state'),
            'dest_endereco_cep': order.get('shipping_postal_code'),
            'observacoes': data.observacoes,
            'emitido_por': ctx.user_id,
        }

        existing_id = self.repo.find_draft_id(ctx.tenant_id, data.order_id)
        invoice = self.repo.save_draft(ctx.tenant_id, draft, items, existing_id=existing_id)

        self.repo.add_event(
            ctx.tenant_id, invoice.id,
            "draft_updated" if existing_id else "draft_created",
            {'order_id': data.order_id, 'items_count': len(items), 'ibge_code': ibge_code},
            user_id=ctx.user_id
        )
        logger.info(f"Fiscal draft {invoice.id} {'updated' if existing_id else 'created'} for order {data.order_id}")

        return {
            'invoice': invoice.to_dict(),
            'items': [item.model_dump() for item in items],
            'emitente': fiscal.emitente(),
            'warnings': [] if ibge_code else [IBGE_NOT_FOUND_WARNING],
        }

    # =========================================================================
    # Focus NFe
    # =========================================================================

    def _apply_response(self, invoice: FiscalInvoice, data: Dict[str, Any],
                        connector: FocusNFeConnector, now: datetime,
                        base_changes: Dict[str, Any]) -> str:
        """Persist a Focus NFe status payload and return the internal status"""
        status = map_focus_status(data.get('status'))
        changes = dict(base_changes)
        changes['status'] = status
        changes['mensagem_sefaz'] = data.get('mensagem_sefaz')

        if status == 'rejected':
            changes['last_error'] = data.get('mensagem_sefaz') or data.get('mensagem')

        if status == 'authorized':
            numero = int(data.get('numero') or invoice.numero or 0)
            changes.update({
                'chave_acesso': data.get('chave_nfe'),
                'protocolo': data.get('protocolo'),
                'numero': numero,
                'danfe_url': connector.absolute_url(data.get('caminho_danfe')),
                'xml_url': connector.absolute_url(data.get('caminho_xml_nota_fiscal')),
                'authorized_at': now,
                'last_error': None,
            })
            self.repo.mark_authorized(invoice, changes, next_numero=numero + 1)
        else:
            self.repo.update_invoice(invoice.id, changes)

        return status

    async def emit(self, ctx: TenantContext, invoice_id: str) -> Dict[str, Any]:
        invoice = self._invoice_or_404(ctx, invoice_id)

        if invoice.status not in EMITTABLE_STATUSES:
            raise ValidationError(
                f"NF-e com status '{invoice.status}' não pode ser emitida",
                code="INVALID_STATUS"
            )
        if not invoice.items:
            raise ValidationError("NF-e sem itens.")

        missing = missing_recipient_fields(invoice)
        if missing:
            raise ValidationError(
                f"Campos obrigatórios não preenchidos: {', '.join(missing)}. Verifique os dados de endereço.",
                details={'missing': missing}
            )

        fiscal = self._settings_or_error(ctx.tenant_id)
        connector = self.connector_factory(fiscal)
        payload = build_focus_payload(invoice, fiscal)

        logger.info(f"Submitting NF-e {invoice.id} to Focus NFe ({connector.ambiente})")
        result = await connector.send_nfe(invoice.id, payload)
        now = datetime.now(timezone.utc)

        if not result.success:
            self.repo.update_invoice(invoice.id, {'status': 'rejected', 'last_error': result.error})
            self.repo.add_event(
                ctx.tenant_id, invoice.id, "rejected",
                {'error': result.error, 'response': result.data}, user_id=ctx.user_id
            )
            logger.error(f"NF-e {invoice.id} rejected by Focus NFe: {result.error}")
            raise IntegrationError(result.error or "Erro ao emitir NF-e", details={'status': 'rejected'})

        data = result.data or {}
        status = self._apply_response(invoice, data, connector, now, {'submitted_at': now, 'last_error': None})

        event_type = {"authorized": "authorized", "rejected": "rejected"}.get(status, "submitted")
        self.repo.add_event(ctx.tenant_id, invoice.id, event_type, {'focus': data}, user_id=ctx.user_id)
        logger.info(f"NF-e {invoice.id} processed with Focus status {data.get('status')}")

        return {
            'success': status != 'rejected',
            'status': status,
            'focus_status': data.get('status'),
            'chave_acesso': data.get('chave_nfe'),
            'numero': data.get('numero'),
            'serie': data.get('serie'),
            'protocolo': data.get('protocolo'),
            'mensagem': data.get('mensagem_sefaz'),
        }

    async def get_status(self, ctx: TenantContext, invoice_id: str) -> Dict[str, Any]:
        invoice = self._invoice_or_404(ctx, invoice_id)

        if invoice.status != 'pending':
            return {
                'success': True,
                'status': invoice.status,
                'chave_acesso': invoice.chave_acesso,
                'protocolo': invoice.protocolo,
                'danfe_url': invoice.danfe_url,
                'message': "NF-e autorizada" if invoice.status == 'authorized'
                else invoice.mensagem_sefaz or "Status atual",
            }

        fiscal = self._settings_or_error(ctx.tenant_id)
        connector = self.connector_factory(fiscal)
        result = await connector.get_nfe(invoice.id)

        self.repo.add_event(
            ctx.tenant_id, invoice.id, "status_query",
            {'success': result.success, 'error': result.error, 'focus': result.data},
            user_id=ctx.user_id
        )

        if not result.success:
            self.repo.update_invoice(invoice.id, {'last_error': result.error})
            return {'success': False, 'status': 'pending', 'error': result.error}

        data = result.data or {}
        status = self._apply_response(invoice, data, connector, datetime.now(timezone.utc), {})

        if status in ("authorized", "rejected"):
            self.repo.add_event(ctx.tenant_id, invoice.id, status, {'focus': data}, user_id=ctx.user_id)

        return {
            'success': status != 'rejected',
            'status': status,
            'chave_acesso': data.get('chave_nfe'),
            'protocolo': data.get('protocolo'),
            'message': data.get('mensagem_sefaz'),
        }

    async def cancel(self, ctx: TenantContext, invoice_id: str, justificativa: str) -> Dict[str, Any]:
        justificativa = (justificativa or "").strip()
        if len(justificativa) < 15 or len(justificativa) > 255:
            raise ValidationError("Justificativa deve ter entre 15 e 255 caracteres", field="justificativa")

        invoice = self._invoice_or_404(ctx, invoice_id)
        if invoice.status != 'authorized':
            raise ValidationError("Apenas NF-e autorizadas podem ser canceladas", code="INVALID_STATUS")

        fiscal = self._settings_or_error(ctx.tenant_id)
        connector = self.connector_factory(fiscal)
        result = await connector.cancel_nfe(invoice.id, justificativa)

        if not result.success:
            self.repo.add_event(
                ctx.tenant_id, invoice.id, "cancel_failed", {'error': result.error}, user_id=ctx.user_id
            )
            raise IntegrationError(result.error or "Erro ao cancelar NF-e")

        self.repo.update_invoice(invoice.id, {
            'status': 'cancelled',
            'cancelled_at': datetime.now(timezone.utc),
            'mensagem_sefaz': (result.data or {}).get('mensagem_sefaz'),
        })
        self.repo.add_event(
            ctx.tenant_id, invoice.id, "cancelled",
            {'justificativa': justificativa, 'focus': result.data}, user_id=ctx.user_id
        )
        logger.info(f"NF-e {invoice.id} cancelled")

        return {'success': True, 'status': 'cancelled'}
