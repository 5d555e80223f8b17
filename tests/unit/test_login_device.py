"""Unit tests for user-agent parsing and device fingerprints."""

from loginwatch.domains.login.device import DeviceParser, device_fingerprint

CHROME_WINDOWS = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)
SAFARI_IPHONE = (
    "Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.0 Mobile/15E148 Safari/604.1"
)
GOOGLEBOT = "Mozilla/5.0 (compatible; Googlebot/2.1; +http://www.google.com/bot.html)"


class TestDeviceFingerprint:
    def test_deterministic(self):
        assert device_fingerprint("8.8.8.8", CHROME_WINDOWS) == device_fingerprint(
            "8.8.8.8", CHROME_WINDOWS
        )

    def test_is_sha256_hex(self):
        fp = device_fingerprint("8.8.8.8", CHROME_WINDOWS)
        assert len(fp) == 64
        int(fp, 16)

    def test_ip_changes_fingerprint(self):
        assert device_fingerprint("8.8.8.8", CHROME_WINDOWS) != device_fingerprint(
            "8.8.4.4", CHROME_WINDOWS
        )

    def test_user_agent_changes_fingerprint(self):
        assert device_fingerprint("8.8.8.8", CHROME_WINDOWS) != device_fingerprint(
            "8.8.8.8", SAFARI_IPHONE
        )

    def test_missing_inputs_treated_as_empty(self):
        assert device_fingerprint(None, None) == device_fingerprint("", "")


class TestDeviceParser:
    def test_desktop_chrome(self):
        info = DeviceParser().parse(CHROME_WINDOWS)
        assert info.device_type == "desktop"
        assert info.os.startswith("Windows")
        assert info.browser.startswith("Chrome")

    def test_mobile_safari(self):
        info = DeviceParser().parse(SAFARI_IPHONE)
        assert info.device_type == "mobile"
        assert info.os.startswith("iOS")
        assert "Safari" in info.browser

    def test_bot(self):
        assert DeviceParser().parse(GOOGLEBOT).device_type == "bot"

    def test_empty_user_agent(self):
        info = DeviceParser().parse("")
        assert (info.device_type, info.os, info.browser) == ("unknown", "unknown", "unknown")

    def test_none_user_agent(self):
        assert DeviceParser().parse(None).device_type == "unknown"

    def test_unrecognised_user_agent(self):
        info = DeviceParser().parse("xyzzy")
        assert info.os == "unknown"
        assert info.browser == "unknown"
