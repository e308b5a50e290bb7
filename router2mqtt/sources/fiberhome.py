"""
FiberHome HG6145F Counter Source
================================

Obtiene los contadores PON del router vía su interfaz web con Playwright
(Chromium headless). El login solo funciona desde el JS de la UI, por eso
se automatiza el navegador en lugar de llamar la API directamente.

Flujo por ciclo:
1. Abrir http://<router>/ y loguearse (#user_name, #loginpp, #login_btn)
2. GET /cgi-bin/ajax?ajaxmethod=get_base_info → JSON con los contadores
3. GET /cgi-bin/ajax?ajaxmethod=get_refresh_sessionid → sessionid
4. POST ajaxmethod=do_logout (el router admite una sola sesión)
5. Cerrar el navegador
"""
import logging
import random
from typing import Any, Dict, Iterable, List, Optional

from ..exceptions import FetchError
from .base import CounterSource, Number

logger = logging.getLogger(__name__)

DEFAULT_COUNTERS = ("ponBytesSent", "ponBytesReceived")

CHROMIUM_ARGS = ["--no-sandbox", "--disable-setuid-sandbox"]

_LOGOUT_SCRIPT = """
async (sessionId) => {
    const response = await fetch('/cgi-bin/ajax', {
        method: 'POST',
        headers: { 'Content-Type': 'application/x-www-form-urlencoded' },
        body: `sessionid=${sessionId}&username=common&ajaxmethod=do_logout&_=${Math.random()}`,
    });
    return response.ok;
}
"""


def extract_counters(payload: Any, counters: Iterable[str]) -> Dict[str, Number]:
    """
    Extrae y convierte a número los contadores pedidos de get_base_info.

    Raises:
        FetchError: Payload no es un objeto JSON, falta un contador o no es numérico
    """
    if not isinstance(payload, dict):
        raise FetchError(f"Unexpected base info payload type: {type(payload).__name__}")

    readings: Dict[str, Number] = {}
    for name in counters:
        if name not in payload:
            raise FetchError(f"Counter '{name}' missing from router response")
        readings[name] = _to_number(name, payload[name])
    return readings


def _to_number(name: str, raw: Any) -> Number:
    if isinstance(raw, bool):
        raise FetchError(f"Counter '{name}' is not numeric: {raw!r}")
    if isinstance(raw, (int, float)):
        return raw
    if isinstance(raw, str):
        text = raw.strip()
        try:
            return int(text)
        except ValueError:
            pass
        try:
            return float(text)
        except ValueError:
            pass
    raise FetchError(f"Counter '{name}' is not numeric: {raw!r}")


class FiberHomeCounterSource(CounterSource):
    """
    Scraper del HG6145F.

    Usage:
        source = FiberHomeCounterSource("192.168.1.1", "user", "secret")
        source.fetch_counters()  # {"ponBytesSent": 123, "ponBytesReceived": 456}
    """

    def __init__(
        self,
        host: str,
        username: str,
        password: str,
        counters: Iterable[str] = DEFAULT_COUNTERS,
        timeout_seconds: float = 30.0,
        executable_path: Optional[str] = None,
        headless: bool = True,
    ):
        self.host = host
        self.username = username
        self.password = password
        self.counters: List[str] = list(counters)
        self.timeout_seconds = timeout_seconds
        self.executable_path = executable_path
        self.headless = headless

    @property
    def base_url(self) -> str:
        return f"http://{self.host}"

    def _ajax_url(self, method: str) -> str:
        return f"{self.base_url}/cgi-bin/ajax?ajaxmethod={method}&_={random.random()}"

    def fetch_counters(self) -> Dict[str, Number]:
        from playwright.sync_api import Error as PlaywrightError, sync_playwright

        logger.info(
            "🌐 Consultando contadores del router",
            extra={
                "component": "fiberhome_source",
                "event": "fetch_started",
                "router_host": self.host,
            }
        )

        try:
            with sync_playwright() as playwright:
                browser = playwright.chromium.launch(
                    headless=self.headless,
                    args=CHROMIUM_ARGS,
                    executable_path=self.executable_path,
                )
                try:
                    page = browser.new_page()
                    page.set_default_timeout(self.timeout_seconds * 1000)
                    page.on("dialog", lambda dialog: dialog.accept())

                    self._login(page)
                    base_info = self._fetch_json(page, "get_base_info")
                    self._logout(page)
                finally:
                    browser.close()
        except PlaywrightError as e:
            raise FetchError(f"Router navigation failed: {e}") from e

        readings = extract_counters(base_info, self.counters)
        logger.debug(
            "📥 Contadores recibidos",
            extra={
                "component": "fiberhome_source",
                "event": "fetch_completed",
                "readings": readings,
            }
        )
        return readings

    def _login(self, page) -> None:
        page.goto(self.base_url)
        page.wait_for_selector("#user_name")
        page.fill("#user_name", self.username)
        page.fill("#loginpp", self.password)
        with page.expect_navigation():
            page.click("#login_btn")

    def _fetch_json(self, page, method: str) -> Any:
        response = page.goto(self._ajax_url(method))
        if response is None or not response.ok:
            status = None if response is None else response.status
            raise FetchError(f"ajaxmethod={method} failed (status={status})")
        try:
            return response.json()
        except ValueError as e:
            raise FetchError(f"ajaxmethod={method} returned invalid JSON: {e}") from e

    def _logout(self, page) -> None:
        session = self._fetch_json(page, "get_refresh_sessionid")
        session_id = session.get("sessionid") if isinstance(session, dict) else None
        if not session_id:
            logger.warning(
                "⚠️ Router no devolvió sessionid, logout omitido",
                extra={"component": "fiberhome_source", "event": "logout_skipped"}
            )
            return

        if page.evaluate(_LOGOUT_SCRIPT, session_id):
            logger.debug(
                "👋 Logout realizado",
                extra={"component": "fiberhome_source", "event": "logout"}
            )
        else:
            logger.warning(
                "⚠️ Error al realizar el logout",
                extra={"component": "fiberhome_source", "event": "logout_failed"}
            )
