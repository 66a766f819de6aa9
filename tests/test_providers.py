# Tests for auth/providers.py
# Created: 2026-10-09

import pytest

from melodex.auth.providers import OSU, PROVIDERS, SPOTIFY, ClientAuthMethod, get_provider


class TestProviders:
    def test_registry(self):
        assert set(PROVIDERS) == {"spotify", "osu"}
        assert get_provider("osu") is OSU

    def test_unknown_provider(self):
        with pytest.raises(ValueError, match="Unknown OAuth provider"):
            get_provider("lastfm")

    def test_custom_registry(self):
        assert get_provider("spotify", {"spotify": SPOTIFY}) is SPOTIFY
        with pytest.raises(ValueError):
            get_provider("osu", {"spotify": SPOTIFY})

    def test_port_ranges(self):
        assert SPOTIFY.ports == (8888, 8889, 8890, 8891, 8892)
        assert OSU.ports == (8080, 8081, 8082, 8083, 8084)

    def test_client_auth_methods(self):
        assert SPOTIFY.client_auth is ClientAuthMethod.BASIC
        assert OSU.client_auth is ClientAuthMethod.FORM

    def test_redirect_uri_uses_bound_port(self):
        assert SPOTIFY.redirect_uri(8890) == "http://127.0.0.1:8890/callback"


class TestProfileParsing:
    def test_spotify_profile(self):
        profile = SPOTIFY.parse_profile(
            {"id": "alice01", "display_name": "Alice", "images": [{"url": "https://i/a.png"}]}
        )
        assert profile.user_name == "Alice"
        assert profile.avatar_url == "https://i/a.png"

    def test_spotify_profile_without_images(self):
        profile = SPOTIFY.parse_profile({"id": "alice01", "display_name": None, "images": []})
        assert profile.user_name == "alice01"
        assert profile.avatar_url is None

    def test_osu_profile(self):
        profile = OSU.parse_profile({"username": "peppy", "avatar_url": "https://a.ppy.sh/2"})
        assert profile.user_name == "peppy"
        assert profile.avatar_url == "https://a.ppy.sh/2"
