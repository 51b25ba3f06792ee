"""
CRM Automation Engine CLI
"""
import asyncio
import json
import logging
import sys

import click
import yaml
from dotenv import load_dotenv

from .config import EngineConfig, ConfigurationError
from .core.engine import AutomationEngine
from .core.parser import WorkflowParser
from .exceptions import AutomationEngineError
from .storage.record_store import InMemoryRecordStore


def _echo_json(data):
    click.echo(json.dumps(data, indent=2, ensure_ascii=False, default=str))


def _load_config(ctx) -> EngineConfig:
    try:
        if ctx.obj.get("config_file"):
            return EngineConfig.from_file(ctx.obj["config_file"])
        return EngineConfig.from_env()
    except ConfigurationError as e:
        raise click.ClickException(str(e))


@click.group()
@click.option('--config', 'config_file', type=click.Path(exists=True), help='YAML config file')
@click.option(
    '--log-level',
    default='INFO',
    type=click.Choice(['DEBUG', 'INFO', 'WARNING', 'ERROR'], case_sensitive=False),
    help='Logging level'
)
@click.pass_context
def cli(ctx, config_file, log_level):
    """CRM Automation Engine CLI"""
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )
    ctx.ensure_object(dict)
    ctx.obj["config_file"] = config_file


@cli.command()
@click.option('--host', default='0.0.0.0', envvar='API_HOST', help='Host to bind to')
@click.option('--port', default=8000, envvar='API_PORT', help='Port to bind to')
@click.option('--no-scheduler', is_flag=True, help='Serve the API without background loops')
@click.pass_context
def serve(ctx, host, port, no_scheduler):
    """Start the API server and the scheduler loops"""
    import uvicorn
    from .api.app import create_app

    config = _load_config(ctx)
    app = create_app(config=config, start_scheduler=not no_scheduler)

    click.echo(f"Starting API server on {host}:{port}")
    uvicorn.run(app, host=host, port=port)


@cli.command()
@click.argument('workflow_files', nargs=-1, required=True, type=click.Path(exists=True))
def validate(workflow_files):
    """Validate workflow definition files"""
    parser = WorkflowParser()
    failed = False

    for path in workflow_files:
        try:
            workflow = parser.parse_file(path)
            click.echo(f"OK    {path} ({workflow.name}, {len(workflow.steps)} steps)")
        except AutomationEngineError as e:
            failed = True
            click.echo(f"ERROR {path}: {e}", err=True)

    if failed:
        sys.exit(1)


@cli.command()
@click.argument('workflow_file', type=click.Path(exists=True))
@click.option('--entity-type', default='LEAD', help='Trigger entity type')
@click.option('--entity-id', default=None, help='Trigger entity id')
@click.option('--records', 'records_file', type=click.Path(exists=True),
              help='YAML file with seed records keyed by table name')
@click.pass_context
def run(ctx, workflow_file, entity_type, entity_id, records_file):
    """Run a workflow once against an in-memory record store"""
    config = _load_config(ctx)

    try:
        workflow = WorkflowParser().parse_file(workflow_file)
    except AutomationEngineError as e:
        raise click.ClickException(str(e))

    seed = {}
    if records_file:
        with open(records_file, 'r', encoding='utf-8') as f:
            seed = yaml.safe_load(f) or {}

    async def _run():
        engine = AutomationEngine.in_memory(config, records=InMemoryRecordStore(seed))
        await engine.register_workflow(workflow)

        result = await engine.trigger_workflow(
            workflow.id, {"entityType": entity_type, "entityId": entity_id}
        )
        if not result.success:
            raise click.ClickException(result.error)

        await engine.run_pending()
        await engine.scheduler.run_message_tick()
        return await engine.get_execution(result.execution_id)

    execution = asyncio.run(_run())
    _echo_json({
        **execution.summary(),
        "errorMessage": execution.error_message,
        "executionLog": [entry.to_dict() for entry in execution.execution_log]
    })


@cli.command('init-db')
@click.option('--database-url', default=None, help='Database URL (overrides config)')
@click.pass_context
def init_db(ctx, database_url):
    """Create the database tables"""
    from .storage.sqlalchemy_repository import DatabaseManager

    config = _load_config(ctx)

    async def _init():
        db_manager = DatabaseManager(database_url or config.database_url)
        await db_manager.initialize(create_tables=True)
        await db_manager.close()

    asyncio.run(_init())
    click.echo("Database tables created")


@cli.command()
@click.argument('workflow_files', nargs=-1, required=True, type=click.Path(exists=True))
@click.pass_context
def load(ctx, workflow_files):
    """Store workflow definitions in the database"""
    config = _load_config(ctx)
    parser = WorkflowParser()

    try:
        workflows = [parser.parse_file(path) for path in workflow_files]
    except AutomationEngineError as e:
        raise click.ClickException(str(e))

    async def _load():
        engine = await AutomationEngine.from_database(config)
        try:
            for workflow in workflows:
                await engine.register_workflow(workflow)
                click.echo(f"Loaded workflow {workflow.id} ({workflow.name})")
        finally:
            await engine.close()

    asyncio.run(_load())


@cli.command()
@click.argument('event_type')
@click.option('--entity-type', required=True, help='Entity type, e.g. LEAD')
@click.option('--entity-id', required=True, help='Entity id')
@click.option('--data', default='{}', help='Additional event data as JSON')
@click.pass_context
def emit(ctx, event_type, entity_type, entity_id, data):
    """Route an event to matching workflows"""
    config = _load_config(ctx)
    try:
        extra = json.loads(data)
    except json.JSONDecodeError as e:
        raise click.BadParameter(f"invalid JSON: {e}", param_hint='--data')

    async def _emit():
        engine = await AutomationEngine.from_database(config)
        try:
            return await engine.route_event(
                event_type, {**extra, "entityType": entity_type, "entityId": entity_id}
            )
        finally:
            await engine.close()

    result = asyncio.run(_emit())
    _echo_json(result.to_dict())
    if not result.success:
        sys.exit(1)


def main():
    """主入口"""
    # 加载 .env 中的环境变量
    load_dotenv()
    cli(obj={})


if __name__ == '__main__':
    main()
