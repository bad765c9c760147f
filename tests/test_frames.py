from __future__ import annotations

import asyncio

import pytest

from engine import Concept, Engine, Fact
from frames import ANY, ActionRef, ConceptRef, Frame, Frames, Literal, Var, actions, fresh, match_pattern, match_when

A = ConceptRef("A")


def _fact(seq, action, input=None, output=None, concept="A", flow="f"):
    return Fact(id=f"{concept}.{action}#{seq}", seq=seq, concept=concept, action=action,
                input=input or {}, output=output if output is not None else {}, flow=flow)


# ── Terms & patterns ─────────────────────────────────────────────────────


def test_vars_with_same_name_are_distinct():
    a, b = Var("user"), Var("user")
    assert a != b
    assert len({a, b}) == 2
    assert repr(a) == "?user"


def test_concept_ref_builds_action_refs():
    ref = A.act1
    assert ref == ActionRef("A", "act1")
    assert ref.key == ("A", "act1")


def test_actions_wraps_plain_values_as_literals():
    x = Var("x")
    (p,) = actions((A.act1, {"path": "/p", "x": x, "y": ANY}, {"out": x}))
    assert p.input["path"] == Literal("/p")
    assert p.input["x"] is x
    assert p.input["y"] is ANY
    assert p.variables() == [x, x]


def test_actions_rejects_malformed_items():
    with pytest.raises(ValueError):
        actions((A.act1,))
    with pytest.raises(TypeError):
        actions(("A.act1", {}))


# ── Frame ────────────────────────────────────────────────────────────────


def test_frame_bind_returns_new_frame():
    x = Var("x")
    empty = Frame()
    bound = empty.bind(x, 5)
    assert x not in empty
    assert bound[x] == 5


def test_frame_first_bind_wins():
    x = Var("x")
    fr = Frame({x: 5})
    assert fr.bind(x, 5) is fr
    assert fr.bind(x, 7) is None


def test_frame_bind_all_and_extends():
    x, y = fresh("x", "y")
    base = Frame({x: 1}, facts=("f1",))
    ext = base.bind_all({y: 2})
    assert ext.facts == ("f1",)
    assert ext.extends(base)
    assert not base.extends(ext)
    assert base.bind_all({x: 2}) is None


def test_frame_resolve():
    x = Var("x")
    fr = Frame({x: "v"})
    assert fr.resolve(x) == "v"
    assert fr.resolve("literal") == "literal"
    with pytest.raises(KeyError):
        fr.resolve(Var("unbound"))


# ── Pattern matching ─────────────────────────────────────────────────────


def test_match_pattern_literal_and_variable():
    x = Var("x")
    (p,) = actions((A.act1, {"path": "/a"}, {"x": x}))
    assert match_pattern(p, _fact(1, "act1", {"path": "/a"}, {"x": 3}), Frame())[x] == 3
    assert match_pattern(p, _fact(2, "act1", {"path": "/b"}, {"x": 3}), Frame()) is None


def test_match_pattern_missing_field_fails_unless_wildcard():
    x = Var("x")
    (p,) = actions((A.act1, {}, {"x": x}))
    assert match_pattern(p, _fact(1, "act1", {}, {"error": "nope"}), Frame()) is None
    (w,) = actions((A.act1, {"anything": ANY}, {}))
    assert match_pattern(w, _fact(1, "act1", {}, {"error": "nope"}), Frame()) is not None


def test_match_pattern_conflicting_binding():
    x = Var("x")
    (p,) = actions((A.act1, {"x": x}, {}))
    assert match_pattern(p, _fact(1, "act1", {"x": 1}), Frame({x: 2})) is None


def test_match_pattern_records_fact():
    (p,) = actions((A.act1, {}, {}))
    fact = _fact(1, "act1")
    assert match_pattern(p, fact, Frame()).facts == (fact.id,)


def test_join_on_shared_variable():
    x = Var("x")
    when = actions((A.act1, {}, {"x": x}), (A.act2, {}, {"x": x}))
    log = [_fact(1, "act1", output={"x": 5}), _fact(2, "act2", output={"x": 5}), _fact(3, "act2", output={"x": 7})]
    frames = match_when(when, log, log[1])
    assert len(frames) == 1
    assert frames[0][x] == 5
    assert match_when(when, log, log[2]) == []


def test_join_requires_trigger_participation():
    x = Var("x")
    when = actions((A.act1, {}, {"x": x}))
    log = [_fact(1, "act1", output={"x": 1}), _fact(2, "act1", output={"x": 2})]
    frames = match_when(when, log, log[1])
    assert [f[x] for f in frames] == [2]


def test_fan_out_in_log_order():
    x, y = fresh("x", "y")
    when = actions((A.act1, {}, {"x": x}), (A.act2, {}, {"y": y}))
    log = [_fact(1, "act1", output={"x": "a"}), _fact(2, "act1", output={"x": "b"}), _fact(3, "act2", output={"y": 1})]
    frames = match_when(when, log, log[2])
    assert [(f[x], f[y]) for f in frames] == [("a", 1), ("b", 1)]


def test_fact_used_once_per_frame():
    x, y = fresh("x", "y")
    when = actions((A.act1, {}, {"x": x}), (A.act1, {}, {"x": y}))
    log = [_fact(1, "act1", output={"x": 1})]
    assert match_when(when, log, log[0]) == []


# ── Frames & query hooks ─────────────────────────────────────────────────


class _Dishes(Concept):
    def __init__(self):
        super().__init__("Dishes")
        self.calls = []

    async def _liked(self, user):
        self.calls.append(user)
        await asyncio.sleep(0)
        return [{"dish": d} for d in {"u1": ["soup", "tofu"], "u2": []}.get(user, [])]

    def _profile(self, user):
        return {"name": user.upper()} if user == "u1" else {"error": "missing"}


def _dishes_engine():
    eng = Engine()
    eng.register_concept(_Dishes())
    return eng


def test_query_fans_out_and_drops_empty():
    user, dish = fresh("user", "dish")
    eng = _dishes_engine()
    frames = Frames([Frame({user: "u1"}, ("r1",)), Frame({user: "u2"}, ("r2",))], engine=eng)
    out = asyncio.run(frames.query(ActionRef("Dishes", "_liked"), {"user": user}, {"dish": dish}))
    assert [(f[user], f[dish]) for f in out] == [("u1", "soup"), ("u1", "tofu")]
    assert all(f.facts == ("r1",) for f in out)
    assert out.engine is eng


def test_query_leaves_missing_fields_unbound():
    user, name, error = fresh("user", "name", "error")
    eng = _dishes_engine()
    frames = Frames([Frame({user: "u1"}), Frame({user: "zz"})], engine=eng)
    out = asyncio.run(frames.query(ActionRef("Dishes", "_profile"), {"user": user}, {"name": name, "error": error}))
    assert out[0][name] == "U1" and error not in out[0]
    assert out[1][error] == "missing" and name not in out[1]


def test_query_drops_frames_with_unbound_input():
    user, dish = fresh("user", "dish")
    eng = _dishes_engine()
    frames = Frames([Frame()], engine=eng)
    out = asyncio.run(frames.query(ActionRef("Dishes", "_liked"), {"user": user}, {"dish": dish}))
    assert out == []
    assert eng.concepts["Dishes"].calls == []


def test_query_without_engine_fails():
    with pytest.raises(RuntimeError):
        asyncio.run(Frames([Frame()]).query(ActionRef("Dishes", "_liked"), {}, {}))


def test_filter_map_collect():
    user, dish = fresh("user", "dish")
    frames = Frames([Frame({user: "u1", dish: "a"}), Frame({user: "u1", dish: "b"}), Frame({user: "u2", dish: "c"})])
    assert len(frames.filter(lambda f: f[user] == "u1")) == 2
    assert frames.collect(user, dish) == {"u1": ["a", "b"], "u2": ["c"]}
    assert frames.values(dish) == ["a", "b", "c"]
    assert len(frames.map(lambda f: None if f[dish] == "c" else f)) == 2
