"""
Headless Chrome via Selenium for pages that need JavaScript, iframe switching
or click-driven navigation.
"""

import time
from contextlib import contextmanager

from selenium import webdriver
from selenium.common.exceptions import TimeoutException, WebDriverException
from selenium.webdriver.chrome.options import Options
from selenium.webdriver.common.by import By

from gigscraper import config
from gigscraper.errors import FetchNetworkError, FetchTimeout

OPTIMIZED = "optimized"
STEALTH = "stealth"

PROFILE_TIMEOUTS = {
    OPTIMIZED: {"implicit_wait": 2, "page_load": 8},
    STEALTH: {"implicit_wait": 5, "page_load": 15},
}

STEALTH_JS = """
Object.defineProperty(navigator, 'webdriver', {get: () => undefined});
Object.defineProperty(navigator, 'plugins', {get: () => [1, 2, 3, 4, 5]});
Object.defineProperty(navigator, 'languages', {get: () => ['ja-JP', 'ja', 'en-US', 'en']});
"""

DATE_NAV_SELECTORS = [
    "button[data-date]", "a[data-date]", ".date-button", ".calendar-day", ".next-date",
    ".date-nav", '[class*="next"]', '[class*="forward"]', 'button[onclick*="date"]',
]
DATE_NAV_XPATHS = [
    "//a[contains(text(), '→')]",
    "//a[contains(text(), '>')]",
    "//button[contains(translate(text(), 'NEXT', 'next'), 'next')]",
    "//a[contains(translate(text(), 'NEXT', 'next'), 'next')]",
]
PAGINATION_SELECTORS = [
    'a[class*="next"]', 'a[class*="more"]', ".pagination a", 'button[class*="next"]',
    'button[class*="more"]', ".load-more",
]


def build_chrome_options(profile=OPTIMIZED, user_agent=None):
    options = Options()
    options.add_argument("--headless=new")
    options.add_argument("--no-sandbox")
    options.add_argument("--disable-dev-shm-usage")
    options.add_argument("--disable-gpu")
    options.add_argument("--window-size=1920,1080")
    options.add_argument(f"--user-agent={user_agent or config.USER_AGENTS[0]}")
    if config.CHROME_BINARY:
        options.binary_location = config.CHROME_BINARY

    if profile == STEALTH:
        options.add_argument("--disable-blink-features=AutomationControlled")
        options.add_argument("--disable-web-security")
        options.add_experimental_option("excludeSwitches", ["enable-automation"])
        options.add_experimental_option("useAutomationExtension", False)
        options.add_experimental_option("prefs", {
            "profile.default_content_setting_values.notifications": 2,
            "profile.managed_default_content_settings.images": 2,
        })
    else:
        options.add_argument("--disable-extensions")
        options.add_argument("--disable-plugins")
        options.add_argument("--blink-settings=imagesEnabled=false")
    return options


def default_driver_factory(profile=OPTIMIZED, user_agent=None):
    return webdriver.Chrome(options=build_chrome_options(profile, user_agent))


class BrowserSession:
    """One Chrome instance for one target; always closed by BrowserFetcher.session()."""

    def __init__(self, driver, profile=OPTIMIZED, target_name=None, sleep=time.sleep,
                 on_response_time=None, log_func=None):
        self.driver = driver
        self.profile = profile
        self.target_name = target_name
        self.sleep = sleep
        self.on_response_time = on_response_time
        self.log = log_func or print

        timeouts = PROFILE_TIMEOUTS.get(profile, PROFILE_TIMEOUTS[OPTIMIZED])
        driver.implicitly_wait(timeouts["implicit_wait"])
        driver.set_page_load_timeout(timeouts["page_load"])
        if profile == STEALTH:
            self.mask_automation()

    def mask_automation(self):
        try:
            self.driver.execute_cdp_cmd("Page.addScriptToEvaluateOnNewDocument", {"source": STEALTH_JS})
        except (WebDriverException, AttributeError):
            # Not a Chromium driver; mask after each load instead
            pass

    def get(self, url, settle=None):
        """Load a URL, wait for it to settle, return the page source."""
        settle = config.BROWSER_SETTLE_SECONDS if settle is None else settle
        started = time.time()
        try:
            self.driver.get(url)
        except TimeoutException as e:
            raise FetchTimeout(f"Browser timeout loading {url}: {e.msg}", url=url)
        except WebDriverException as e:
            raise FetchNetworkError(f"Browser failed loading {url}: {e.msg}", url=url)
        if self.profile == STEALTH:
            self.run_script(STEALTH_JS)
        if settle:
            self.sleep(settle)
        if self.target_name and self.on_response_time:
            self.on_response_time(self.target_name, time.time() - started)
        return self.page_source

    @property
    def page_source(self):
        try:
            return self.driver.page_source or ""
        except WebDriverException:
            return ""

    def run_script(self, script, *args):
        try:
            return self.driver.execute_script(script, *args)
        except WebDriverException as e:
            self.log(f"    Script failed: {e.msg}")
            return None

    def challenge_present(self):
        source = self.page_source
        return any(marker.lower() in source.lower() for marker in config.CHALLENGE_MARKERS)

    def wait_out_challenge(self, extra_wait):
        """Give an anti-bot interstitial extra time; True if it cleared."""
        if not self.challenge_present():
            return True
        self.log(f"    Challenge page detected, waiting {extra_wait:.0f}s")
        self.sleep(extra_wait)
        return not self.challenge_present()

    def schedule_iframes(self):
        frames = []
        try:
            for frame in self.driver.find_elements(By.TAG_NAME, "iframe"):
                src = (frame.get_attribute("src") or "").lower()
                if "schedule" in src or "calendar" in src:
                    frames.append(frame)
        except WebDriverException as e:
            self.log(f"    iframe lookup failed: {e.msg}")
        return frames

    def iframe_source(self, frame, settle=3.0):
        """Switch into an iframe, return its HTML, switch back."""
        try:
            self.driver.switch_to.frame(frame)
            self.sleep(settle)
            return self.page_source
        except WebDriverException as e:
            self.log(f"    iframe switch failed: {e.msg}")
            return ""
        finally:
            try:
                self.driver.switch_to.default_content()
            except WebDriverException:
                pass

    def _clickable_elements(self, selectors, xpaths=()):
        elements = []
        for selector in selectors:
            try:
                elements.extend(self.driver.find_elements(By.CSS_SELECTOR, selector))
            except WebDriverException:
                continue
        for xpath in xpaths:
            try:
                elements.extend(self.driver.find_elements(By.XPATH, xpath))
            except WebDriverException:
                continue
        return elements

    def click_through(self, selectors=None, xpaths=None, max_clicks=5, settle=1.5):
        """
        Click navigation elements one by one; yield the page HTML after every
        click that actually changed the content.
        """
        selectors = DATE_NAV_SELECTORS if selectors is None else selectors
        xpaths = DATE_NAV_XPATHS if xpaths is None else xpaths
        previous = self.page_source
        clicks = 0
        for element in self._clickable_elements(selectors, xpaths):
            if clicks >= max_clicks:
                break
            try:
                if not element.is_displayed():
                    continue
                element.click()
            except WebDriverException:
                continue
            clicks += 1
            self.sleep(settle)
            current = self.page_source
            if current and current != previous:
                previous = current
                yield current

    def image_sources(self):
        sources = self.run_script(
            "return Array.from(document.images).map(function (img) { return img.currentSrc || img.src; });"
        )
        return [src for src in (sources or []) if src]

    def close(self):
        try:
            self.driver.quit()
        except WebDriverException:
            pass


class BrowserFetcher:
    def __init__(self, driver_factory=None, sleep=time.sleep, on_response_time=None, log_func=None):
        self.driver_factory = driver_factory or default_driver_factory
        self.sleep = sleep
        self.on_response_time = on_response_time
        self.log = log_func or print

    @contextmanager
    def session(self, profile=OPTIMIZED, target_name=None, user_agent=None):
        try:
            driver = self.driver_factory(profile, user_agent)
        except WebDriverException as e:
            raise FetchNetworkError(f"Could not start browser: {e.msg}")
        session = BrowserSession(
            driver,
            profile=profile,
            target_name=target_name,
            sleep=self.sleep,
            on_response_time=self.on_response_time,
            log_func=self.log,
        )
        try:
            yield session
        finally:
            session.close()
