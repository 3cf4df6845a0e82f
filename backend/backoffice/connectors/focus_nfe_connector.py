"""
Focus NFe Connector
NF-e submission, status query and cancellation through the Focus NFe REST API

Documentation: https://focusnfe.com.br/doc/
Authentication is HTTP Basic with the token as user and an empty password.

Author: Backoffice API team
Date: 2026-02-13
"""
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

logger = logging.getLogger(__name__)

PRODUCTION_URL = "https://api.focusnfe.com.br"
HOMOLOGATION_URL = "https://homologacao.focusnfe.com.br"

# Focus status -> fiscal_invoices.status
FOCUS_STATUS_MAP = {
    "autorizado": "authorized",
    "processando_autorizacao": "pending",
    "erro_autorizacao": "rejected",
    "denegado": "rejected",
    "cancelado": "cancelled",
}


def map_focus_status(status: Optional[str]) -> str:
    return FOCUS_STATUS_MAP.get(status or "", "pending")


@dataclass
class FocusResult:
    success: bool
    data: Optional[Dict[str, Any]] = None
    error: Optional[str] = None


def _error_message(data: Any, status_code: int, with_field: bool = False) -> str:
    if isinstance(data, dict):
        erros = data.get("erros") or []
        if erros:
            if with_field:
                return "; ".join(f"{e.get('campo') or ''}: {e.get('mensagem')}" for e in erros)
            return ", ".join(str(e.get("mensagem")) for e in erros)
        if data.get("mensagem"):
            return str(data["mensagem"])
    return f"HTTP {status_code}"


class FocusNFeConnector:
    """Connector for Focus NFe (v2)"""

    def __init__(self, token: str, ambiente: str = "homologacao",
                 transport: httpx.AsyncBaseTransport = None):
        if not token:
            raise ValueError("Focus NFe token not configured")
        self.token = token
        self.ambiente = ambiente
        self.base_url = PRODUCTION_URL if ambiente == "producao" else HOMOLOGATION_URL
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            auth=(self.token, ""),
            transport=self._transport,
            timeout=60.0
        )

    def absolute_url(self, path: Optional[str]) -> Optional[str]:
        """caminho_danfe / caminho_xml_nota_fiscal are relative to the API host"""
        if not path:
            return None
        if path.startswith("http"):
            return path
        return f"{self.base_url}{path}"

    async def send_nfe(self, ref: str, payload: Dict[str, Any]) -> FocusResult:
        """
        Submit an NF-e for authorization.

        200 means authorized right away, 202 means still processing.
        """
        try:
            async with self._client() as client:
                response = await client.post("/v2/nfe", params={"ref": ref}, json=payload)

            text = response.text
            if response.status_code == 401 or text.startswith("HTTP Basic"):
                return FocusResult(
                    success=False,
                    error="Token Focus NFe inválido ou não autorizado. Verifique o token configurado."
                )

            try:
                data = response.json()
            except ValueError:
                return FocusResult(success=False, error=f"Resposta inesperada da Focus NFe: {text[:200]}")

            if response.status_code in (200, 202):
                return FocusResult(success=True, data=data)

            return FocusResult(
                success=False,
                data=data,
                error=_error_message(data, response.status_code, with_field=True)
            )

        except httpx.HTTPError as e:
            logger.error(f"Focus NFe send error: {e}")
            return FocusResult(success=False, error=str(e))

    async def get_nfe(self, ref: str) -> FocusResult:
        """Query an NF-e. 422 still carries a parseable body (rejection details)."""
        try:
            async with self._client() as client:
                response = await client.get(f"/v2/nfe/{ref}")
            data = response.json()

            if not response.is_success and response.status_code != 422:
                return FocusResult(success=False, error=_error_message(data, response.status_code))

            return FocusResult(success=True, data=data)

        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Focus NFe status error: {e}")
            return FocusResult(success=False, error=str(e))

    async def cancel_nfe(self, ref: str, justificativa: str) -> FocusResult:
        if len(justificativa) < 15 or len(justificativa) > 255:
            return FocusResult(success=False, error="Justificativa deve ter entre 15 e 255 caracteres")

        try:
            async with self._client() as client:
                response = await client.request("DELETE", f"/v2/nfe/{ref}", json={"justificativa": justificativa})
            data = response.json()

            if not response.is_success:
                return FocusResult(success=False, error=_error_message(data, response.status_code))

            return FocusResult(success=True, data=data)

        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Focus NFe cancel error: {e}")
            return FocusResult(success=False, error=str(e))
