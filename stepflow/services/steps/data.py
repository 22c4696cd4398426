import datetime
import re
from pathlib import Path
from typing import Any, List, Optional

from stepflow.core.models import ExtractConfig, LoopConfig, ScreenshotConfig, ScriptConfig

_RETURN_RE = re.compile(r"\breturn\b")
_FUNCTION_RE = re.compile(r"^\s*(async\s+)?(function\b|\([^)]*\)\s*=>|\w+\s*=>)")


class DataSteps:
    async def _action_extract(self, cfg: ExtractConfig, timeout_ms: int) -> str:
        element = await self._locate_element(cfg.selector, timeout_ms, state="attached")
        attribute = (cfg.attribute or "textContent").strip()
        if attribute == "textContent":
            content = await element.text_content(timeout=timeout_ms)
        elif attribute == "innerText":
            content = await element.inner_text(timeout=timeout_ms)
        elif attribute == "innerHTML":
            content = await element.inner_html(timeout=timeout_ms)
        elif attribute == "value":
            content = await element.input_value(timeout=timeout_ms)
        else:
            content = await element.get_attribute(attribute, timeout=timeout_ms)
        if content is None:
            content = ""
        content = content.strip()
        self.logger.info("Extracted %s from %s: %s", attribute, cfg.selector, content)
        return content

    def _screenshot_path(self, extension: str) -> Path:
        stamp = datetime.datetime.now().strftime("%Y-%m-%d-%H-%M-%S-%f")
        folder: Path = self.output_dir
        folder.mkdir(parents=True, exist_ok=True)
        return folder / f"screenshot-{stamp}.{extension}"

    async def _action_screenshot(self, cfg: ScreenshotConfig, timeout_ms: int) -> str:
        image_type = "jpeg" if str(cfg.format or "").lower() in {"jpeg", "jpg"} else "png"
        target = self._screenshot_path("jpg" if image_type == "jpeg" else "png")
        if (cfg.selector or "").strip():
            element = await self._locate_element(cfg.selector, timeout_ms)
            await element.screenshot(path=str(target), type=image_type, timeout=timeout_ms)
        else:
            await self.page.screenshot(
                path=str(target),
                full_page=bool(cfg.full_page),
                type=image_type,
                timeout=timeout_ms,
            )
        self.logger.info("Saved screenshot to %s", target)
        return str(target)

    async def _action_script(self, cfg: ScriptConfig, timeout_ms: int) -> Any:
        code = cfg.code or ""
        # bare statements with a return need a function body around them
        if _RETURN_RE.search(code) and not _FUNCTION_RE.match(code):
            code = f"async () => {{\n{code}\n}}"
        return await self.page.evaluate(code)

    async def _action_loop_matches(self, cfg: LoopConfig, timeout_ms: int) -> List[str]:
        # Matches present right now; an empty page is zero iterations, not a timeout.
        locator = self._build_locator(cfg.selector)
        texts: List[Optional[str]] = await locator.all_text_contents()
        self.logger.info("Found %s matches for %s", len(texts), cfg.selector)
        return [(text or "").strip() for text in texts]
