"""
Screenshot Capture Module

Turns a live page into an image reference the pipeline can analyse.
Uses headless Playwright; only needed for the CLI's --url input.
"""

from datetime import datetime
from pathlib import Path
from typing import Optional

from playwright.async_api import TimeoutError as PlaywrightTimeout
from playwright.async_api import async_playwright

from .errors import CaptureError
from .log import get_logger

logger = get_logger("ux_critique.capture")


class ScreenshotCapturer:
    """
    Captures screenshots of web pages using a headless Chromium browser.

    Example:
        capturer = ScreenshotCapturer(viewport={"width": 1440, "height": 900})
        path = await capturer.capture(
            url="https://shop.example.com/checkout",
            selector="[data-step='payment']",
            wait_for=".payment-form"
        )
    """

    def __init__(
        self,
        viewport: Optional[dict] = None,
        output_dir: Optional[Path] = None
    ):
        """
        Args:
            viewport: Viewport dimensions {"width": int, "height": int}
                     Defaults to 1920x1080
            output_dir: Directory to save screenshots
                       Defaults to ./screenshots/
        """
        self.viewport = viewport or {"width": 1920, "height": 1080}
        self.output_dir = output_dir or Path("screenshots")

    async def capture(
        self,
        url: str,
        selector: Optional[str] = None,
        wait_for: Optional[str] = None,
        output_path: Optional[Path] = None,
        full_page: bool = True,
        wait_timeout: int = 10000
    ) -> Path:
        """
        Capture one page state.

        Args:
            url: Page URL (file:// or http(s)://)
            selector: CSS selector to click before capture (a tab, a step)
            wait_for: CSS selector to wait for before capture
            output_path: Custom path; generated from url and selector if None
            full_page: Capture the full scrollable page
            wait_timeout: Milliseconds to wait for navigation and elements

        Returns:
            Path to the saved PNG

        Raises:
            CaptureError: If navigation, clicking or waiting fails
        """
        screenshot_path = output_path or self._generate_path(url, selector)
        screenshot_path.parent.mkdir(parents=True, exist_ok=True)

        async with async_playwright() as p:
            browser = await p.chromium.launch(headless=True)
            try:
                page = await browser.new_page(viewport=self.viewport)
                await page.goto(url, wait_until="networkidle", timeout=wait_timeout)

                if selector:
                    await page.click(selector, timeout=wait_timeout)
                if wait_for:
                    await page.wait_for_selector(wait_for, timeout=wait_timeout)

                # Let transitions settle
                await page.wait_for_timeout(500)
                await page.screenshot(path=str(screenshot_path), full_page=full_page, type="png")
            except PlaywrightTimeout as e:
                raise CaptureError(f"Timed out capturing {url}: {e}") from e
            except Exception as e:
                raise CaptureError(f"Screenshot capture failed: {e}") from e
            finally:
                await browser.close()

        logger.info("Captured %s -> %s", url, screenshot_path)
        return screenshot_path

    def _generate_path(self, url: str, selector: Optional[str] = None) -> Path:
        """Format: screenshot_{timestamp}_{url_fragment}[_{selector}].png"""
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")

        url_part = url.rstrip("/").split("/")[-1].split(".")[0] if "/" in url else "page"
        url_part = "".join(c for c in url_part if c.isalnum() or c in "-_")[:20] or "page"

        if selector:
            selector_part = "".join(c for c in selector if c.isalnum() or c in "-_")[:20]
            filename = f"screenshot_{timestamp}_{url_part}_{selector_part}.png"
        else:
            filename = f"screenshot_{timestamp}_{url_part}.png"

        return self.output_dir / filename
