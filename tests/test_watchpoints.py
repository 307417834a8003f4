"""Memory watchpoints and per-instruction callbacks."""
import json

import pytest

from ir_sym.config import Config, Watchpoint
from ir_sym.engine.explorer import PathExplorer, Query
from ir_sym.engine.outcomes import OutcomeKind
from ir_sym.errors import ConfigError, ExecutionError
from ir_sym.link.linker import Project


@pytest.fixture
def globals_project(link):
    return link("globals")


@pytest.fixture
def table_project(tmp_path):
    module = {
        "name": "table.c",
        "globals": [{"name": "table", "type": "[4 x i32]"}],
        "functions": [
            {"name": "poke", "params": [{"name": "i", "type": "i32"}], "return": "i32",
             "blocks": [{"label": "entry", "instructions": [
                 {"op": "gep", "dest": "p", "type": "[4 x i32]", "args": ["@table", 0, "%i"]},
                 {"op": "store", "type": "i32", "args": [7, "%p"]},
                 {"op": "ret", "args": [0]}
             ]}]}
        ],
    }
    path = tmp_path / "table.json"
    path.write_text(json.dumps(module))
    return Project.from_paths([path])


def _events(project, config, query):
    result = PathExplorer(project, config).explore(query)
    return [str(event) for outcome in result.returns for event in outcome.watch_events]


def test_stores_to_a_watched_global_are_recorded(globals_project):
    config = Config(watchpoints={"g1": Watchpoint("global1", size=4)})
    events = _events(globals_project, config, Query("dont_confuse_globals", [1]))
    assert events == ["g1: store at dont_confuse_globals:entry"] * 2


def test_partial_overlap_triggers(globals_project):
    config = Config(watchpoints={"high": Watchpoint("global2", offset=2, size=2)})
    events = _events(globals_project, config, Query("dont_confuse_globals", [1]))
    assert events == ["high: store at dont_confuse_globals:entry", "high: load at dont_confuse_globals:entry"]


def test_untouched_watchpoint_stays_quiet(globals_project):
    config = Config(watchpoints={"g2": Watchpoint("global2", size=4)})
    assert _events(globals_project, config, Query("read_global")) == []


def test_symbolic_index_hits_only_when_feasible(table_project):
    config = Config(watchpoints={"third": Watchpoint("table", offset=8, size=4)})
    assert _events(table_project, config, Query("poke")) == ["third: store at poke:entry"]
    assert _events(table_project, config, Query("poke", [1])) == []
    assert _events(table_project, config, Query("poke", constraints=lambda args: [args["i"].expr != 2])) == []


def test_watchpoints_from_mapping():
    config = Config.from_mapping({"watchpoints": {"w": {"symbol": "global1", "size": 4}}})
    assert config.watchpoints == {"w": Watchpoint("global1", 0, 4)}


@pytest.mark.parametrize(
    "spec",
    [{"offset": 0}, {"symbol": "global1", "size": 0}, {"symbol": "global1", "offset": -1}, {"symbol": "g", "x": 1}, 5],
)
def test_invalid_watchpoints(spec):
    with pytest.raises(ConfigError):
        Config(watchpoints={"w": spec})


@pytest.mark.parametrize("watchpoint", [Watchpoint("missing"), Watchpoint("read_global"), Watchpoint("global1", 2, 4)])
def test_watchpoint_must_fit_a_global(globals_project, watchpoint):
    with pytest.raises(ConfigError):
        PathExplorer(globals_project, Config(watchpoints={"w": watchpoint}))


def test_instruction_callbacks_see_every_instruction(globals_project):
    seen = []
    config = Config(instruction_callbacks=[lambda instruction, state: seen.append(
        (state.frame.function.name, instruction.opcode.value)
    )])
    PathExplorer(globals_project, config).explore(Query("modify_global_with_call", [4]))
    assert seen == [
        ("modify_global_with_call", "call"),
        ("modify_global", "store"),
        ("modify_global", "load"),
        ("modify_global", "ret"),
        ("modify_global_with_call", "load"),
        ("modify_global_with_call", "ret"),
    ]


def test_callback_can_fail_a_path(globals_project):
    def reject_stores(instruction, state):
        if instruction.opcode.value == "store":
            raise ExecutionError("stores are not allowed here")

    result = PathExplorer(globals_project, Config(instruction_callbacks=[reject_stores])).explore(
        Query("modify_global", [1])
    )
    (outcome,) = result.outcomes
    assert outcome.kind == OutcomeKind.ERROR
    assert "stores are not allowed here" in outcome.message


def test_callbacks_must_be_callable():
    with pytest.raises(ConfigError):
        Config(instruction_callbacks=["not a function"])


def test_callbacks_cannot_come_from_a_config_file():
    with pytest.raises(ConfigError, match="instruction_callbacks"):
        Config.from_mapping({"instruction_callbacks": []})
