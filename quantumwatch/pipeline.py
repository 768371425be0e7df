"""Stage registry and entry points used by the CLI and the scheduler."""
import logging
import sqlite3

from quantumwatch.database import Database
from quantumwatch.ingest import IngestStage
from quantumwatch.notify import NotifyStage
from quantumwatch.stage_runner import StageLockError, StageResult, StageRunner
from quantumwatch.summarize import SummarizeStage
from quantumwatch.synthesize import SynthesizeStage

logger = logging.getLogger(__name__)

# Pipeline order; each stage only reads what earlier stages wrote
STAGES: dict[str, type[StageRunner]] = {
    "ingest": IngestStage,
    "summarize": SummarizeStage,
    "synthesize": SynthesizeStage,
    "notify": NotifyStage,
}


def build_stage(name: str, db: Database, config: dict) -> StageRunner:
    """Instantiate the runner for stage name with its default collaborator."""
    try:
        stage_cls = STAGES[name]
    except KeyError:
        raise ValueError(f"Unknown stage: {name}. Expected one of {', '.join(STAGES)}")
    return stage_cls(db, config)


def run_stage(
    name: str,
    db: Database,
    config: dict,
    limit: int | None = None,
    force: bool = False,
) -> StageResult:
    """Run one stage once."""
    return build_stage(name, db, config).run(limit=limit, force=force)


def run_all(
    db: Database, config: dict, limit: int | None = None, force: bool = False
) -> list[StageResult]:
    """Run every stage once, in pipeline order, each limited to limit items.

    A stage that is disabled, locked or aborted does not stop the stages
    after it.
    """
    results = []
    for name in STAGES:
        try:
            results.append(run_stage(name, db, config, limit=limit, force=force))
        except StageLockError as e:
            logger.warning(f"Skipping {name}: {e}")
            results.append(StageResult(stage=name, disabled=str(e)))
        except sqlite3.Error as e:
            logger.error(f"Aborting {name}, store unavailable: {e}")
            results.append(StageResult(stage=name, aborted=True))
    return results
