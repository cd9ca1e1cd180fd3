"""Tests for the opt-in TokenCache."""

import threading

from fabric_notify.auth.cache import CacheKey, TokenCache
from fabric_notify.auth.scopes import GRAPH_DEFAULT_SCOPE, KEY_VAULT_SCOPE
from tests._support.stub_azure import CLIENT_ID, TENANT_ID


def _key(scope=GRAPH_DEFAULT_SCOPE, client_id=CLIENT_ID, tenant_id=TENANT_ID) -> CacheKey:
    return TokenCache.key_for(client_id, tenant_id, scope)


class TestCacheKey:
    def test_scopes_with_same_audience_share_a_key(self):
        assert _key(GRAPH_DEFAULT_SCOPE) == _key("https://graph.microsoft.com/Mail.Send")

    def test_key_normalises_case(self):
        assert _key(client_id=CLIENT_ID.upper()) == _key()

    def test_identity_is_part_of_the_key(self):
        other_client = "00000000-0000-4000-8000-000000000000"
        assert _key(client_id=other_client) != _key()
        assert _key(KEY_VAULT_SCOPE) != _key()


class TestTokenCache:
    def test_miss(self):
        assert TokenCache().get(_key()) is None

    def test_put_get(self, make_token):
        cache = TokenCache()
        token = make_token()
        cache.put(_key(), token)
        assert cache.get(_key()) is token
        assert cache.size() == 1

    def test_expiring_token_is_evicted_on_read(self, make_token):
        cache = TokenCache(skew_seconds=120)
        cache.put(_key(), make_token(seconds=100))
        assert cache.get(_key()) is None
        assert cache.size() == 0

    def test_max_size_drops_oldest(self, make_token):
        cache = TokenCache(max_size=2)
        first, second, third = (_key(client_id=f"00000000-0000-4000-8000-00000000000{i}") for i in range(3))
        cache.put(first, make_token())
        cache.put(second, make_token())
        cache.put(third, make_token())
        assert cache.get(first) is None
        assert cache.get(second) is not None
        assert cache.get(third) is not None

    def test_replacing_existing_key_does_not_evict(self, make_token):
        cache = TokenCache(max_size=1)
        cache.put(_key(), make_token(value="a"))
        cache.put(_key(), make_token(value="b"))
        assert cache.get(_key()).value == "b"

    def test_invalidate_and_clear(self, make_token):
        cache = TokenCache()
        cache.put(_key(), make_token())
        cache.put(_key(KEY_VAULT_SCOPE), make_token(KEY_VAULT_SCOPE))
        cache.invalidate(_key())
        cache.invalidate(_key())
        assert cache.size() == 1
        cache.clear()
        assert cache.size() == 0

    def test_concurrent_puts(self, make_token):
        cache = TokenCache(max_size=8)
        token = make_token()

        def worker(i):
            for j in range(50):
                cache.put(_key(client_id=f"00000000-0000-4000-8000-0000000000{i}{j % 4}"), token)

        threads = [threading.Thread(target=worker, args=(i,)) for i in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert cache.size() <= 8
