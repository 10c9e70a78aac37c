from __future__ import annotations

from flowcanvas.core.identity import (
    file_checksum,
    fnv1a_32,
    generate_id,
    id_prefix,
    manifest_hash,
    short_hash,
)


def test_fnv1a_known_values() -> None:
    assert fnv1a_32("") == 0x811C9DC5
    assert fnv1a_32("a") == 0xE40C292C
    assert fnv1a_32("foobar") == 0xBF9CF968


def test_short_hash_is_fixed_width() -> None:
    assert short_hash("") == "811c9dc5"
    for s in ["a", "foobar", "x" * 1000]:
        h = short_hash(s)
        assert len(h) == 8
        int(h, 16)


def test_generate_id_is_stable_and_prefixed() -> None:
    a = generate_id("if_statement", "global/sum", "main.js", 3, 2)
    b = generate_id("if_statement", "global/sum", "main.js", 3, 2)
    assert a == b
    assert a.startswith("if_")


def test_generate_id_depends_on_every_input() -> None:
    base = generate_id("if_statement", "global/sum", "main.js", 3, 2)
    assert generate_id("if_statement", "global/sum", "main.js", 3, 2, signature="#1") != base
    assert generate_id("if_statement", "global/sum", "main.js", 4, 2) != base
    assert generate_id("if_statement", "global/sum", "main.js", 3, 3) != base
    assert generate_id("if_statement", "global/max", "main.js", 3, 2) != base
    assert generate_id("if_statement", "global/sum", "other.js", 3, 2) != base


def test_id_prefix_fallback() -> None:
    assert id_prefix("for_in_statement") == "forin"
    assert id_prefix("something_new") == "stmt"


def test_manifest_hash_is_order_independent() -> None:
    a = file_checksum("let a = 1;")
    b = file_checksum("let b = 2;")
    assert manifest_hash([a, b]) == manifest_hash([b, a])
    assert manifest_hash([a]) != manifest_hash([a, b])
