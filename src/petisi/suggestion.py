"""Optional support-statement suggestions from a hosted language model.

Given the signer's position and location this asks Gemini for one short
formal sentence of support. It is an auxiliary text generator only:
without an API key, or on any failure, a fixed sentence is returned.
"""

import logging
from typing import Any, Optional

import httpx

logger = logging.getLogger("petisi.suggestion")

GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"

NO_KEY_FALLBACK = (
    "Saya mendukung penuh perjuangan Aparatur Desa agar diakui dalam UU ASN "
    "demi kesejahteraan dan kepastian hukum."
)
ERROR_FALLBACK = (
    "Sebagai ujung tombak pemerintahan, kami menuntut keadilan dan pengakuan "
    "status ASN yang layak."
)


def build_prompt(position: str, location: str) -> str:
    return (
        "Buatkan satu kalimat pernyataan dukungan yang profesional, tegas, dan "
        "emosional (maksimal 25 kata) untuk pernyataan sikap \"Tuntutan Aparatur "
        "Pemerintah Desa Masuk dalam UU ASN 2026\".\n\n"
        "Profil Penandatangan:\n"
        f"- Jabatan: {position}\n"
        f"- Asal: {location}\n\n"
        "Kalimat harus dalam Bahasa Indonesia formal, fokus pada pengabdian dan "
        "kepastian status. Jangan gunakan tanda kutip."
    )


def _response_text(data: dict[str, Any]) -> str:
    parts = data["candidates"][0]["content"]["parts"]
    return "".join(p.get("text", "") for p in parts).strip()


class SupportSuggester:
    """Generates a suggested support statement.

    Args:
        api_key: Gemini API key; None disables the model entirely.
        model: Model name.
        http: Shared ``httpx.AsyncClient`` (one is created per call
            otherwise).
        timeout: Request timeout in seconds.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = "gemini-2.5-flash",
        http: Optional[httpx.AsyncClient] = None,
        timeout: float = 20.0,
    ) -> None:
        self.api_key = api_key
        self.model = model
        self._http = http
        self.timeout = timeout

    async def suggest(self, position: str, location: str) -> str:
        if not self.api_key:
            return NO_KEY_FALLBACK

        url = f"{GEMINI_BASE_URL}/models/{self.model}:generateContent"
        body = {"contents": [{"parts": [{"text": build_prompt(position, location)}]}]}
        headers = {"x-goog-api-key": self.api_key}
        try:
            if self._http is not None:
                response = await self._http.post(url, json=body, headers=headers)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as http:
                    response = await http.post(url, json=body, headers=headers)
            response.raise_for_status()
            text = _response_text(response.json())
        except (httpx.HTTPError, ValueError, KeyError, IndexError, TypeError) as exc:
            logger.error("Suggestion model error: %s", exc)
            return ERROR_FALLBACK
        return text or ERROR_FALLBACK
