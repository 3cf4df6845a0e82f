"""
Correios Connector
Tracking (SRO Rastro) through the Correios REST API

Two authentication modes, chosen by credentials['auth_mode']:
- 'token' / 'token_cws': pre-generated CWS token stored with the provider
- OAuth2 (default): usuario + senha + cartao_postagem exchanged for a token
  that is cached per tenant for 50 minutes

Author: Backoffice API team
Date: 2026-02-12
"""
import logging
import time
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple
from zoneinfo import ZoneInfo

import httpx

from backoffice.connectors.tracking_result import TrackingResult
from backoffice.core.text import strip_accents
from backoffice.domain.shipment import TrackingEvent

logger = logging.getLogger(__name__)

BRAZIL_TZ = ZoneInfo("America/Sao_Paulo")
TOKEN_CACHE_SECONDS = 50 * 60

# tenant_id -> (token, expires_at epoch)
_token_cache: Dict[str, Tuple[str, float]] = {}

# Checked in order, first match wins
DESCRIPTION_RULES = [
    # "nao entregue" contains "entregue"
    ("failed", ("nao entregue",)),
    ("delivered", ("entregue",)),
    ("out_for_delivery", ("saiu para entrega", "out for delivery")),
    ("returned", ("devolvido", "em devolucao")),
    ("failed", ("tentativa de entrega nao efetuada", "destinatario ausente",
                "endereco incorreto", "endereco insuficiente", "falha na entrega")),
    ("canceled", ("postagem cancelada", "objeto cancelado")),
    ("in_transit", ("encaminhado", "em transito", "objeto em transferencia", "saiu de", "chegou em",
                    "recebido na unidade", "objeto recebido", "fiscalizacao aduaneira finalizada",
                    "liberado sem tributacao")),
]

LABEL_PHRASES = ("etiqueta", "aguardando postagem", "objeto aguardando", "pre-postagem")

CODE_STATUS = {
    "BDE": "delivered", "BDI": "delivered",
    "OEC": "out_for_delivery",
    "LDI": "in_transit", "RO": "in_transit", "DO": "in_transit", "PAR": "in_transit",
    "OEI": "in_transit", "FC": "in_transit", "LDE": "in_transit",
    "PO": "posted", "POI": "posted",
    "BDR": "failed", "PMT": "failed",
}


def map_correios_status(codigo: Optional[str], tipo: Optional[str], descricao: Optional[str]) -> str:
    """
    Map a Correios event to a delivery status.

    The description is checked first (codigo is sometimes empty or generic),
    then the event code.
    """
    if descricao:
        desc = strip_accents(descricao.lower())

        for status, phrases in DESCRIPTION_RULES:
            if any(phrase in desc for phrase in phrases):
                return status

        if "objeto postado" in desc or "objeto coletado" in desc or (
            "postado" in desc and "aguardando postagem" not in desc
        ):
            return "posted"

        if any(phrase in desc for phrase in LABEL_PHRASES):
            return "label_created"

    if codigo:
        code = codigo.upper()
        if code in CODE_STATUS:
            return CODE_STATUS[code]
        if code == "BLQ" and str(tipo) == "70":
            return "returned"

    if codigo or descricao:
        logger.warning(
            f"Unmapped Correios status - codigo: {codigo or 'null'}, tipo: {tipo or 'null'}, "
            f"descricao: {(descricao or 'null')[:50]}"
        )
    return "unknown"


def format_correios_location(unidade: Optional[Dict[str, Any]]) -> str:
    if not unidade:
        return ""
    endereco = unidade.get("endereco")
    if endereco:
        return " - ".join(part for part in (endereco.get("cidade"), endereco.get("uf")) if part)
    return unidade.get("nome") or ""


def parse_correios_datetime(value: Optional[str]) -> datetime:
    """dtHrCriado comes without offset and in Brasília time"""
    if not value:
        return datetime.now(timezone.utc)
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=BRAZIL_TZ)
    return parsed


class CorreiosConnector:
    """Connector for api.correios.com.br (token + srorastro)"""

    base_url = "https://api.correios.com.br"

    def __init__(self, tenant_id: str, credentials: Dict[str, Any],
                 transport: httpx.AsyncBaseTransport = None):
        self.tenant_id = tenant_id
        self.credentials = credentials or {}
        self._transport = transport

    async def _get_token(self, client: httpx.AsyncClient) -> Optional[str]:
        auth_mode = self.credentials.get("auth_mode")

        if auth_mode in ("token", "token_cws"):
            token = self.credentials.get("token") or self.credentials.get("api_token")
            if token and len(token) > 50:
                return token
            logger.error("Correios token mode selected but no valid token found")
            return None

        usuario = self.credentials.get("usuario")
        senha = self.credentials.get("senha")
        cartao_postagem = self.credentials.get("cartao_postagem")
        if not usuario or not senha or not cartao_postagem:
            logger.error("Missing Correios OAuth2 credentials (usuario, senha, cartao_postagem)")
            return None

        cached = _token_cache.get(self.tenant_id)
        if cached and cached[1] > time.time():
            return cached[0]

        try:
            response = await client.post(
                f"{self.base_url}/token/v1/autentica/cartaopostagem",
                auth=(usuario, senha),
                headers={"Accept": "application/json"},
                json={"numero": cartao_postagem}
            )
        except httpx.HTTPError as e:
            logger.error(f"Correios token fetch error: {e}")
            return None

        if not response.is_success:
            logger.error(f"Correios OAuth2 auth error: {response.status_code} {response.text}")
            return None

        token = response.json().get("token")
        if token:
            _token_cache[self.tenant_id] = (token, time.time() + TOKEN_CACHE_SECONDS)
        return token

    async def fetch_events(self, tracking_code: str) -> TrackingResult:
        try:
            async with httpx.AsyncClient(transport=self._transport, timeout=30.0) as client:
                token = await self._get_token(client)
                if not token:
                    return TrackingResult(success=False, error="auth_failed")

                response = await client.get(
                    f"{self.base_url}/srorastro/v1/objetos/{tracking_code}",
                    params={"resultado": "T"},
                    headers={
                        "Authorization": f"Bearer {token}",
                        "Accept": "application/json",
                        "Accept-Language": "pt-BR",
                    }
                )

            if not response.is_success:
                logger.error(f"Correios API error: {response.status_code} {response.text}")
                if response.status_code == 401:
                    _token_cache.pop(self.tenant_id, None)
                return TrackingResult(success=False, error=f"api_error_{response.status_code}")

            objetos = response.json().get("objetos") or []
            if not objetos:
                return TrackingResult(success=True)

            events = []
            for idx, evento in enumerate(objetos[0].get("eventos") or []):
                criado = evento.get("dtHrCriado")
                descricao = evento.get("descricao")
                events.append(TrackingEvent(
                    provider_event_id=f"correios_{tracking_code}_{criado or idx}",
                    status=map_correios_status(evento.get("codigo"), evento.get("tipo"), descricao),
                    description=descricao or "Evento",
                    location=format_correios_location(evento.get("unidade")),
                    occurred_at=parse_correios_datetime(criado),
                ))

            logger.info(f"Correios: found {len(events)} events for {tracking_code}")
            return TrackingResult(success=True, events=events)

        except Exception as e:
            logger.error(f"Correios fetch error: {e}")
            return TrackingResult(success=False, error="fetch_error")


def clear_token_cache():
    _token_cache.clear()
