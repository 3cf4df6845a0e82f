"""
Fiscal Domain Models

NF-e invoices (fiscal_invoices), their items and the tenant's fiscal settings.

Invoice lifecycle:
    draft -> pending -> authorized -> cancelled
                     -> rejected -> (re-emitted) pending ...

Author: Backoffice API team
Date: 2026-02-13
"""
from pydantic import BaseModel, Field, ConfigDict
from typing import Optional, List
from datetime import datetime

INVOICE_STATUSES = ("draft", "pending", "authorized", "rejected", "cancelled")

# Statuses from which emit() may (re)submit an invoice
EMITTABLE_STATUSES = ("draft", "rejected")

DEFAULT_NATUREZA_OPERACAO = "VENDA DE MERCADORIA"
DEFAULT_CFOP_INTRA = "5102"
DEFAULT_CFOP_INTER = "6102"
DEFAULT_CSOSN = "102"
DEFAULT_PIS_COFINS_CST = "07"


class FiscalSettings(BaseModel):
    """
    Tenant fiscal configuration (fiscal_settings)

    Fields:
        numero_nfe_atual: Next NF-e number to use
        ambiente: 'producao' or 'homologacao'
        focus_token: Tenant Focus NFe token, falls back to FOCUS_NFE_TOKEN
    """

    tenant_id: str
    razao_social: Optional[str] = None
    nome_fantasia: Optional[str] = None
    cnpj: Optional[str] = None
    inscricao_estadual: Optional[str] = None
    endereco_uf: Optional[str] = None
    cfop_intrastadual: Optional[str] = None
    cfop_interestadual: Optional[str] = None
    csosn_padrao: Optional[str] = None
    cst_padrao: Optional[str] = None
    numero_nfe_atual: Optional[int] = None
    serie_nfe: Optional[int] = None
    ambiente: str = "homologacao"
    focus_token: Optional[str] = None

    model_config = ConfigDict(from_attributes=True, coerce_numbers_to_str=True)

    def emitente(self) -> dict:
        return {
            'razao_social': self.razao_social,
            'cnpj': self.cnpj,
            'endereco_uf': self.endereco_uf,
        }


class FiscalInvoiceItem(BaseModel):
    numero_item: int
    order_item_id: Optional[str] = None
    codigo_produto: str
    descricao: str = "Produto"
    ncm: str = ""
    cfop: str
    unidade: str = "UN"
    quantidade: float
    valor_unitario: float
    valor_total: float
    origem: str = "0"
    csosn: Optional[str] = None
    cst: Optional[str] = None

    model_config = ConfigDict(from_attributes=True, coerce_numbers_to_str=True)


class FiscalInvoice(BaseModel):
    """
    NF-e invoice domain model

    The dest_* fields hold the recipient snapshot taken when the draft was
    built from the order.
    """

    id: str
    tenant_id: str
    order_id: Optional[str] = None
    numero: Optional[int] = None
    serie: Optional[int] = None
    status: str = "draft"
    natureza_operacao: str = DEFAULT_NATUREZA_OPERACAO
    cfop: Optional[str] = None
    valor_total: float = 0
    valor_produtos: float = 0
    valor_frete: float = 0
    valor_desconto: float = 0

    dest_nome: Optional[str] = None
    dest_cpf_cnpj: Optional[str] = None
    dest_inscricao_estadual: Optional[str] = None
    dest_telefone: Optional[str] = None
    dest_email: Optional[str] = None
    dest_endereco_logradouro: Optional[str] = None
    dest_endereco_numero: Optional[str] = None
    dest_endereco_complemento: Optional[str] = None
    dest_endereco_bairro: Optional[str] = None
    dest_endereco_municipio: Optional[str] = None
    dest_endereco_municipio_codigo: Optional[str] = None
    dest_endereco_uf: Optional[str] = None
    dest_endereco_cep: Optional[str] = None

    observacoes: Optional[str] = None
    chave_acesso: Optional[str] = None
    protocolo: Optional[str] = None
    danfe_url: Optional[str] = None
    xml_url: Optional[str] = None
    mensagem_sefaz: Optional[str] = None
    last_error: Optional[str] = None
    submitted_at: Optional[datetime] = None
    authorized_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    items: List[FiscalInvoiceItem] = Field(default_factory=list)

    model_config = ConfigDict(from_attributes=True, coerce_numbers_to_str=True)

    def to_dict(self) -> dict:
        return self.model_dump(mode="json")


class DraftCreate(BaseModel):
    order_id: str
    natureza_operacao: Optional[str] = None
    observacoes: Optional[str] = None


class InvoiceCancel(BaseModel):
    justificativa: str = Field(..., min_length=15, max_length=255)
