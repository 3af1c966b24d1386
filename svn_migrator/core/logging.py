import logging
import sys


class ContextFormatter(logging.Formatter):
    """Custom formatter that handles optional job_id and phase fields."""
    def format(self, record):
        # Add default values for job_id and phase if not present
        if not hasattr(record, 'job_id'):
            record.job_id = '-'
        if not hasattr(record, 'phase'):
            record.phase = '-'
        return super().format(record)


def configure_logging() -> None:
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(ContextFormatter(
        "%(asctime)s %(levelname)s %(name)s [job_id=%(job_id)s phase=%(phase)s] - %(message)s"
    ))
    logging.basicConfig(
        level=logging.INFO,
        handlers=[handler],
    )


def job_context(job_id, phase=None) -> dict:
    return {"job_id": str(job_id) if job_id is not None else "-", "phase": str(phase) if phase else "-"}
