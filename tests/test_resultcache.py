from docbrowser.filtermodel import make_predicate
from docbrowser.querycompiler import QueryConfig, QueryMode, SortDirection
from docbrowser.resultcache import ResultCache, fingerprint


def make_clock(start=0.0):
    t = {"now": float(start)}
    def now():
        return t["now"]
    def advance(dt):
        t["now"] += float(dt)
    return now, advance


def test_entry_expires_after_ttl():
    now, advance = make_clock(0.0)
    cache = ResultCache(ttl_seconds=300, now=now)
    cache.put("k", [{"id": 1}], 10)

    advance(299)
    hit = cache.get("k")
    assert hit is not None and hit.total_count == 10 and hit.rows == [{"id": 1}]

    advance(1)
    assert cache.get("k") is None
    # expired entries are ignored, not evicted
    assert len(cache) == 1


def test_put_overwrites_and_invalidate_all_clears():
    now, advance = make_clock(0.0)
    cache = ResultCache(ttl_seconds=5, now=now)
    cache.put("k", [], 0)
    advance(10)
    cache.put("k", [{"id": "a"}], 1)
    assert cache.get("k").rows == [{"id": "a"}]

    cache.invalidate_all()
    assert len(cache) == 0
    assert cache.get("k") is None


def test_rows_are_copied_in_and_out():
    now, _ = make_clock(0.0)
    cache = ResultCache(ttl_seconds=60, now=now)
    rows = [{"id": 1, "title": "a"}]
    cache.put("k", rows, 1)
    rows[0]["title"] = "changed by caller"

    hit = cache.get("k")
    assert hit.rows == [{"id": 1, "title": "a"}]
    hit.rows[0]["title"] = "changed by view"
    assert cache.get("k").rows == [{"id": 1, "title": "a"}]

def test_fingerprint_is_stable_and_shape_sensitive():
    p = make_predicate("status", "equals", "published", predicate_id="p1")
    cfg = QueryConfig(predicates=[p], search_text="x")
    base = fingerprint("conn", "ns", cfg, 1, 100)

    # predicate ids do not take part, only what the predicate means
    same = QueryConfig(
        predicates=[make_predicate("status", "equals", "published", predicate_id="other")],
        search_text="x",
    )
    assert fingerprint("conn", "ns", same, 1, 100) == base

    assert fingerprint("conn", "ns", cfg, 2, 100) != base
    assert fingerprint("conn", "ns", cfg, 1, 50) != base
    assert fingerprint("conn", "other", cfg, 1, 100) != base
    assert fingerprint("other", "ns", cfg, 1, 100) != base
    assert fingerprint("conn", "ns", cfg.model_copy(update={"search_text": "y"}), 1, 100) != base
    assert fingerprint("conn", "ns", cfg.model_copy(update={"sort_direction": SortDirection.desc}), 1, 100) != base
    assert fingerprint("conn", "ns", cfg.model_copy(update={"query_mode": QueryMode.fulltext}), 1, 100) != base
    # same triple compiled against an array attribute is a different query
    retyped = QueryConfig(predicates=[p.model_copy(update={"attribute_type": "[]string"})], search_text="x")
    assert fingerprint("conn", "ns", retyped, 1, 100) != base


def test_fingerprint_does_not_collide_on_concatenation():
    a = QueryConfig(predicates=[make_predicate("ab", "equals", "c")])
    b = QueryConfig(predicates=[make_predicate("a", "equals", "bc")])
    assert fingerprint("c", "n", a, 1, 10) != fingerprint("c", "n", b, 1, 10)
