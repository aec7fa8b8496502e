import httpx
import pytest

from caresync.core.errors import AttributeLookupError
from caresync.models.attributes import ClearanceLevel, UserAttributes
from caresync.providers.base import get_provider, list_providers
from caresync.providers.rest_provider import RestProfileProvider
from caresync.providers.static_provider import StaticProfileProvider


def test_builtin_providers_register():
    assert {"static", "rest"} <= set(list_providers())
    with pytest.raises(KeyError):
        get_provider("ldap")


@pytest.mark.asyncio
async def test_static_provider():
    provider = StaticProfileProvider()
    provider.put(UserAttributes(id="n-1", roles=["nurse"]))
    assert (await provider.fetch("n-1")).roles == ["nurse"]
    assert await provider.fetch("n-2") is None


@pytest.mark.asyncio
async def test_rest_provider_maps_profile_row():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["apikey"] = request.headers.get("apikey")
        return httpx.Response(
            200,
            json=[
                {
                    "id": "doc-1",
                    "role": "doctor",
                    "hospital_id": "h-1",
                    "department": "Cardiology",
                    "clearance_level": "high",
                    "is_active": True,
                }
            ],
        )

    provider = RestProfileProvider("https://profiles.test/", "anon-key", transport=httpx.MockTransport(handler))
    profile = await provider.fetch("doc-1")
    assert profile.roles == ["doctor"]
    assert profile.primary_role == "doctor"
    assert profile.clearance_level is ClearanceLevel.HIGH
    assert seen["url"].startswith("https://profiles.test/rest/v1/profiles?")
    assert "id=eq.doc-1" in seen["url"]
    assert seen["apikey"] == "anon-key"


@pytest.mark.asyncio
async def test_rest_provider_missing_row_and_errors():
    empty = RestProfileProvider("https://profiles.test", "k", transport=httpx.MockTransport(lambda r: httpx.Response(200, json=[])))
    assert await empty.fetch("ghost") is None

    failing = RestProfileProvider("https://profiles.test", "k", transport=httpx.MockTransport(lambda r: httpx.Response(503)))
    with pytest.raises(AttributeLookupError):
        await failing.fetch("doc-1")

    with pytest.raises(AttributeLookupError):
        await RestProfileProvider("", "k").fetch("doc-1")
