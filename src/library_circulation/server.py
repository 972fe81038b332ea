"""Library Circulation MCP Server - FastMCP Implementation

Exposes the circulation engine to MCP clients over the stdio transport.

Startup wires the pieces together explicitly:
1. Configuration is read from the environment (``config.get_config``)
2. A ``DatabaseManager`` is built for the configured URL and the schema created
3. A ``CirculationEngine`` is built with the configured fine policy and periods
4. Every engine operation is registered as one MCP tool

Scheduled work (expiring reservations, marking loans overdue) is exposed as
tools as well; an external scheduler calls them.
"""

import logging
import signal
import sys
from collections.abc import Awaitable, Callable
from typing import Any

from fastmcp import FastMCP
from fastmcp.tools import Tool, ToolResult
from pydantic.json_schema import SkipJsonSchema

from .circulation.engine import CirculationEngine
from .circulation.fines import FineCalculator
from .circulation.membership import MembershipService
from .config import CirculationConfig, get_config
from .database.session import DatabaseManager
from .tools.circulation import build_circulation_tools

# stderr for logs, stdout carries the MCP protocol
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stderr)],
)

logger = logging.getLogger(__name__)

ToolHandler = Callable[[dict[str, Any]], Awaitable[dict[str, Any]]]


class CirculationTool(Tool):
    """
    An MCP tool backed by one of the circulation handlers.

    ``parameters`` is the JSON schema of the handler's pydantic input model,
    so clients see the real argument names. The handler validates the
    arguments itself and reports refusals as ``isError`` results.
    """

    handler: SkipJsonSchema[ToolHandler]

    async def run(self, arguments: dict[str, Any]) -> ToolResult:
        result = await self.handler(arguments)
        text = result["content"][0]["text"]
        if result.get("isError"):
            return ToolResult(content=text, structured_content=result["error"], is_error=True)
        return ToolResult(content=text, structured_content=result["data"])


def build_engine(
    config: CirculationConfig,
    db: DatabaseManager,
    membership: MembershipService | None = None,
) -> CirculationEngine:
    """Build a circulation engine from configuration."""
    return CirculationEngine(
        db,
        membership=membership,
        fine_calculator=FineCalculator(config.fine_policy),
        default_loan_days=config.default_loan_days,
        reservation_hold_days=config.reservation_hold_days,
    )


def create_server(
    config: CirculationConfig | None = None,
    db: DatabaseManager | None = None,
    membership: MembershipService | None = None,
) -> FastMCP:
    """
    Create the FastMCP server with every circulation tool registered.

    Args:
        config: Service configuration; the process configuration by default
        db: Database to serve; built from ``config`` by default
        membership: Member lookups; everyone is accepted by default
    """
    config = config or get_config()
    if db is None:
        db = DatabaseManager(config.get_database_url())
        db.init_database()

    engine = build_engine(config, db, membership)

    mcp = FastMCP(
        name=config.server_name,
        version=config.server_version,
        instructions=(
            "Library circulation service. Check books out and in, manage "
            "reservation queues, and run the expiry and overdue sweeps. Every "
            "tool returns a text summary plus structured data; refused requests "
            "come back with isError and an error kind."
        ),
    )

    tools = build_circulation_tools(engine)
    for tool in tools:
        logger.debug("Registering tool: %s", tool["name"])
        try:
            mcp.add_tool(
                CirculationTool(
                    name=tool["name"],
                    description=tool["description"],
                    parameters=tool["inputSchema"],
                    handler=tool["handler"],
                )
            )
        except Exception:
            logger.exception("Failed to register tool %s", tool["name"])
            raise

    logger.info("Registered %d tools", len(tools))
    return mcp


def run_stdio_server(config: CirculationConfig) -> None:
    """Run the MCP server using stdio transport."""
    logging.getLogger().setLevel(config.effective_log_level)
    if not config.debug:
        logging.getLogger("fastmcp").setLevel(logging.WARNING)

    db = DatabaseManager(config.get_database_url())
    db.init_database()
    if not db.verify_connection():
        logger.error("Database at %s is not reachable", config.get_database_url())
        sys.exit(1)

    mcp = create_server(config, db)

    def signal_handler(signum: int, _frame: Any) -> None:
        logger.info("Received signal %s, initiating shutdown...", signum)
        db.close()
        sys.exit(0)

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    logger.info("Starting %s v%s on stdio transport", config.server_name, config.server_version)
    try:
        mcp.run(transport="stdio")
    except Exception:
        logger.exception("Fatal error in MCP server")
        sys.exit(1)
    finally:
        db.close()


def main() -> None:
    """Entry point for the ``library-circulation`` command."""
    try:
        config = get_config()
        logger.info("Library Circulation MCP Server v%s", config.server_version)
        logger.info("Database: %s", config.get_database_url())
        run_stdio_server(config)
    except KeyboardInterrupt:
        logger.info("Server stopped by user")
    except Exception:
        logger.exception("Failed to start MCP server")
        sys.exit(1)


if __name__ == "__main__":
    main()
