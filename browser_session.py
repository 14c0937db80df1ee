"""
Chrome session handling for the stock watcher.

One session is opened per poll cycle. The session exposes the handful of page
interactions the cycle needs (navigate, wait for an element, fill, click,
scroll) and keeps the Chrome DevTools performance log enabled so network
responses can be read back by the response interceptor.
"""

from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Callable, Iterator, Optional, Tuple

from selenium import webdriver
from selenium.common.exceptions import TimeoutException, WebDriverException
from selenium.webdriver.chrome.options import Options
from selenium.webdriver.common.by import By
from selenium.webdriver.support import expected_conditions as EC
from selenium.webdriver.support.ui import WebDriverWait

from config import Settings

logger = logging.getLogger(__name__)

PINCODE_INPUT_SELECTOR = 'input[placeholder="Enter Your Pincode"]'
SUGGESTION_SELECTOR = ".list-group-item"
SUGGESTION_LINK_SELECTOR = ".list-group-item a.searchitem-name"

HIDE_WEBDRIVER_JS = "Object.defineProperty(navigator, 'webdriver', {get: () => false});"

SCROLL_STEP_JS = """
window.scrollBy(0, arguments[0]);
return (window.scrollY + window.innerHeight) >= document.body.scrollHeight;
"""


@dataclass(frozen=True)
class BrowserProfile:
    headless: bool
    args: Tuple[str, ...] = ()
    user_agent: str = ""
    window_size: Tuple[int, int] = (1280, 800)
    locale: str = "en-US"
    undetected: bool = True
    chrome_version_main: Optional[int] = None
    page_load_timeout_seconds: int = 60

    @classmethod
    def from_settings(cls, settings: Settings) -> "BrowserProfile":
        return cls(
            headless=settings.headless,
            args=tuple(settings.browser_args),
            user_agent=settings.user_agent,
            undetected=settings.use_undetected_chrome,
            chrome_version_main=settings.chrome_version_main,
            page_load_timeout_seconds=settings.page_load_timeout_seconds,
        )


def _common_arguments(profile: BrowserProfile) -> Tuple[str, ...]:
    width, height = profile.window_size
    args = [
        f"--window-size={width},{height}",
        f"--lang={profile.locale}",
        "--disable-blink-features=AutomationControlled",
    ]
    if profile.user_agent:
        args.append(f"--user-agent={profile.user_agent}")
    args.extend(profile.args)
    return tuple(dict.fromkeys(args))


def _build_undetected_driver(profile: BrowserProfile) -> Any:
    import undetected_chromedriver as uc

    def make_options() -> Any:
        # uc.Chrome consumes its options object, so each attempt needs a fresh one.
        options = uc.ChromeOptions()
        for arg in _common_arguments(profile):
            options.add_argument(arg)
        if profile.headless:
            options.add_argument("--headless=new")
        options.set_capability("goog:loggingPrefs", {"performance": "ALL"})
        return options

    if profile.chrome_version_main:
        try:
            return uc.Chrome(options=make_options(), version_main=int(profile.chrome_version_main))
        except Exception as e:
            logger.warning(f"Chrome {profile.chrome_version_main} driver unavailable ({e}); retrying with auto-detected version")
    return uc.Chrome(options=make_options())


def _build_selenium_driver(profile: BrowserProfile) -> Any:
    options = Options()
    for arg in _common_arguments(profile):
        options.add_argument(arg)
    if profile.headless:
        options.add_argument("--headless=new")
    options.add_experimental_option("excludeSwitches", ["enable-automation"])
    options.add_experimental_option("useAutomationExtension", False)
    options.set_capability("goog:loggingPrefs", {"performance": "ALL"})
    return webdriver.Chrome(options=options)


def launch_driver(profile: BrowserProfile) -> Any:
    driver = _build_undetected_driver(profile) if profile.undetected else _build_selenium_driver(profile)
    try:
        driver.set_page_load_timeout(profile.page_load_timeout_seconds)
        driver.execute_cdp_cmd("Network.enable", {})
        if profile.user_agent:
            driver.execute_cdp_cmd(
                "Network.setUserAgentOverride",
                {"userAgent": profile.user_agent, "acceptLanguage": profile.locale},
            )
        driver.execute_cdp_cmd("Page.addScriptToEvaluateOnNewDocument", {"source": HIDE_WEBDRIVER_JS})
    except Exception:
        driver.quit()
        raise
    return driver


class BrowserSession:
    def __init__(self, driver: Any) -> None:
        self.driver = driver
        self.closed = False

    def goto(self, url: str) -> None:
        self.driver.get(url)

    def wait_for_selector(self, selector: str, timeout: float) -> bool:
        try:
            WebDriverWait(self.driver, timeout).until(
                EC.presence_of_element_located((By.CSS_SELECTOR, selector))
            )
            return True
        except TimeoutException:
            return False

    def fill(self, selector: str, value: str) -> None:
        element = self.driver.find_element(By.CSS_SELECTOR, selector)
        element.clear()
        element.send_keys(value)

    def click(self, selector: str) -> None:
        self.driver.find_element(By.CSS_SELECTOR, selector).click()

    def scroll_step(self, distance: int) -> bool:
        return bool(self.driver.execute_script(SCROLL_STEP_JS, distance))

    def wait_for_ready(self, timeout: float) -> bool:
        try:
            WebDriverWait(self.driver, timeout).until(
                lambda d: d.execute_script("return document.readyState") == "complete"
            )
            return True
        except TimeoutException:
            return False

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        try:
            self.driver.quit()
        except Exception as e:
            logger.warning(f"Browser did not shut down cleanly: {e}")


@contextmanager
def open_session(profile: BrowserProfile, launcher: Callable[[BrowserProfile], Any] = launch_driver) -> Iterator[BrowserSession]:
    mode = "headless" if profile.headless else "visible"
    engine = "undetected-chromedriver" if profile.undetected else "selenium"
    logger.info(f"Launching Chrome ({mode}, {engine}, args={list(profile.args)})")
    session = BrowserSession(launcher(profile))
    try:
        yield session
    finally:
        session.close()


def apply_location(
    session: BrowserSession,
    pincode: str,
    *,
    input_timeout: float = 10.0,
    suggestion_timeout: float = 5.0,
    reload_timeout: float = 15.0,
) -> bool:
    """Fill the delivery pincode prompt and pick the first suggestion.

    Returns False when the prompt never shows up or a step fails; the caller
    carries on either way.
    """
    if not session.wait_for_selector(PINCODE_INPUT_SELECTOR, input_timeout):
        logger.warning("Pincode input not detected; maybe already set or site changed")
        return False

    try:
        logger.info("Pincode input detected, filling...")
        session.fill(PINCODE_INPUT_SELECTOR, pincode)
        if not session.wait_for_selector(SUGGESTION_SELECTOR, suggestion_timeout):
            logger.warning(f"No pincode suggestion appeared for {pincode}")
            return False
        session.click(SUGGESTION_LINK_SELECTOR)
        session.wait_for_ready(reload_timeout)
    except WebDriverException as e:
        logger.warning(f"Pincode flow failed: {e.__class__.__name__}: {e}")
        return False

    logger.info("Pincode submitted, page reloaded")
    return True


def scroll_to_bottom(
    session: BrowserSession,
    *,
    max_steps: int,
    distance: int,
    pause_seconds: float,
    on_step: Optional[Callable[[], Any]] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> int:
    """Scroll in small steps to trigger lazy-loaded content. Returns steps taken."""
    steps = 0
    for _ in range(max(0, max_steps)):
        steps += 1
        at_bottom = False
        try:
            at_bottom = session.scroll_step(distance)
        except WebDriverException as e:
            logger.debug(f"Scroll step {steps} failed: {e}")
        if on_step is not None:
            on_step()
        if at_bottom:
            break
        sleep(pause_seconds)
    return steps
