import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

from camoufox import AsyncCamoufox
from playwright.async_api import Error as PlaywrightError, TimeoutError as PlaywrightTimeoutError

from stepflow.services.steps.data import DataSteps
from stepflow.services.steps.helpers import LocatorSteps
from stepflow.services.steps.interaction import InteractionSteps
from stepflow.services.steps.navigation import NavigationSteps
from stepflow.storage.db import db_get_camoufox_defaults, outputs_dir, profile_dir_for_name

from .action_types import ActionType
from .errors import StepflowError, TransportError
from .models import StepConfig
from .transport import Transport


class PlaywrightTransport(Transport, NavigationSteps, InteractionSteps, DataSteps, LocatorSteps):
    """Performs step attempts on a Playwright page."""

    _HANDLERS: Dict[ActionType, str] = {
        ActionType.NAVIGATE: "_action_navigate",
        ActionType.CLICK: "_action_click",
        ActionType.TYPE: "_action_type",
        ActionType.WAIT: "_action_wait",
        ActionType.SCROLL: "_action_scroll",
        ActionType.SCREENSHOT: "_action_screenshot",
        ActionType.EXTRACT: "_action_extract",
        ActionType.SCRIPT: "_action_script",
        ActionType.LOOP: "_action_loop_matches",
    }

    def __init__(self, page, *, session: Optional["CamoufoxSession"] = None, output_dir: Optional[Path] = None) -> None:
        self.page = page
        self.session = session
        self.output_dir = Path(output_dir) if output_dir else outputs_dir() / "screenshots"
        label = session.profile_name if session else "-"
        self.logger = logging.LoggerAdapter(logging.getLogger(__name__), {"run": label})

    async def attempt(self, action: ActionType, config: StepConfig, timeout_ms: int) -> Any:
        handler = self._HANDLERS.get(action)
        if handler is None:
            raise TransportError(f"{action.value} steps are not performed by the browser")
        try:
            return await getattr(self, handler)(config, timeout_ms)
        except StepflowError:
            raise
        except PlaywrightTimeoutError as exc:
            raise TransportError(f"Timeout in action {action.value}: {exc}") from exc
        except PlaywrightError as exc:
            raise TransportError(f"Playwright error in {action.value}: {exc}") from exc

    async def close(self) -> None:
        if self.session is not None:
            await self.session.close()


class CamoufoxSession:
    """Starts Camoufox on a persistent profile directory and exposes a Playwright page."""

    def __init__(
        self,
        profile_name: str,
        *,
        headless: Optional[bool] = None,
        camoufox_settings: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.profile_name = profile_name
        self.headless = headless
        self.user_data_dir = profile_dir_for_name(profile_name)
        self._camoufox_settings = camoufox_settings or {}
        self.logger = logging.LoggerAdapter(logging.getLogger(__name__), {"run": profile_name})
        self.context = None
        self.page = None
        self._camoufox_ctx: Optional[AsyncCamoufox] = None

    def _build_launch_kwargs(self) -> Dict[str, Any]:
        merged = dict(db_get_camoufox_defaults())
        merged.update({k: v for k, v in self._camoufox_settings.items() if v is not None})

        kwargs: Dict[str, Any] = {
            "headless": bool(self.headless) if self.headless is not None else False,
            "humanize": merged.get("humanize", True),
            "persistent_context": True,
            "user_data_dir": str(self.user_data_dir),
            "enable_cache": bool(merged.get("enable_cache", True)),
            "block_images": bool(merged.get("block_images", False)),
        }
        locale = str(merged.get("locale") or "").strip()
        if locale:
            kwargs["locale"] = locale
        try:
            width = int(merged.get("window_width") or 0)
            height = int(merged.get("window_height") or 0)
        except (TypeError, ValueError):
            width = height = 0
        if width > 0 and height > 0:
            kwargs["window"] = (width, height)
        return kwargs

    async def start(self):
        os.makedirs(self.user_data_dir, exist_ok=True)
        launch_kwargs = self._build_launch_kwargs()
        self.logger.info("Launching Camoufox for %s with kwargs keys: %s", self.profile_name, sorted(launch_kwargs))
        self._camoufox_ctx = AsyncCamoufox(**launch_kwargs)
        # persistent_context=True makes the manager yield a BrowserContext
        self.context = await self._camoufox_ctx.__aenter__()
        if self.context.pages:
            self.page = self.context.pages[0]
        else:
            self.page = await self.context.new_page()
        return self.page

    async def open_transport(self, output_dir: Optional[Path] = None) -> PlaywrightTransport:
        page = self.page or await self.start()
        return PlaywrightTransport(page, session=self, output_dir=output_dir)

    async def close(self) -> None:
        if self._camoufox_ctx is None:
            return
        self.logger.info("Closing Camoufox resources for %s", self.profile_name)
        try:
            if self.context:
                await self.context.close()
        finally:
            await self._camoufox_ctx.__aexit__(None, None, None)
            self._camoufox_ctx = None
            self.context = None
            self.page = None
