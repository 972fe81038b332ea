"""Tests for server wiring."""

from decimal import Decimal

from fastmcp import FastMCP

from library_circulation.config import CirculationConfig
from library_circulation.server import build_engine, create_server


def test_create_server(test_config, db_manager, membership):
    mcp = create_server(test_config, db_manager, membership)

    assert isinstance(mcp, FastMCP)
    assert mcp.name == "test-library-circulation"


def test_create_server_builds_its_own_database(test_config):
    mcp = create_server(test_config)

    assert isinstance(mcp, FastMCP)
    assert test_config.database_path.exists()


def test_build_engine_uses_configured_policy(test_db_path, db_manager):
    config = CirculationConfig(
        database_path=test_db_path,
        default_loan_days=21,
        reservation_hold_days=3,
        daily_late_fee=Decimal("0.25"),
    )

    engine = build_engine(config, db_manager)

    assert engine.default_loan_days == 21
    assert engine.reservation_hold_days == 3
    assert engine.fines.policy.daily_rate == Decimal("0.25")


async def test_tools_advertise_their_input_schema(test_config, db_manager, membership):
    mcp = create_server(test_config, db_manager, membership)

    tools = {tool.name: tool for tool in await mcp.list_tools()}

    checkout = tools["checkout_book"].parameters
    assert {"book_id", "member_id"} <= set(checkout["properties"])
    assert "arguments" not in checkout["properties"]
    assert set(checkout["required"]) == {"book_id", "member_id"}
    assert "as_of" in tools["expire_reservations"].parameters["properties"]


async def test_call_tool_returns_structured_content(test_config, db_manager, membership):
    mcp = create_server(test_config, db_manager, membership)

    result = await mcp.call_tool("register_book", {"title": "Parable of the Sower"})

    assert not result.is_error
    assert result.structured_content["book"]["status"] == "AVAILABLE"
    assert "Parable of the Sower" in result.content[0].text


async def test_refusals_come_back_as_tool_errors(test_config, db_manager, membership):
    mcp = create_server(test_config, db_manager, membership)

    result = await mcp.call_tool(
        "checkout_book", {"book_id": "book_3f9a1c2d4e5b", "member_id": "member_alice"}
    )

    assert result.is_error
    assert result.structured_content == {
        "kind": "not_found",
        "entity": "Book",
        "id": "book_3f9a1c2d4e5b",
    }
