"""Run command implementation."""

import json
import logging
import sys
from argparse import Namespace
from pathlib import Path
from typing import Any, Dict

import yaml

from apiflow.exceptions import ApiflowError, WorkflowValidationError
from apiflow.exec.cancellation import CancellationToken
from apiflow.exec.http_client import HttpxClient
from apiflow.loader import StrictBoolLoader, WorkflowLoader
from apiflow.workflow.engine import WorkflowEngine


logger = logging.getLogger(__name__)

EXIT_CODES = {
    'succeeded': 0,
    'failed': 1,
    'cancelled': 3,
}


def parse_inputs(args: Namespace) -> Dict[str, Any]:
    """Parse workflow inputs from an inputs file and KEY=VALUE flags."""
    inputs: Dict[str, Any] = {}

    if args.inputs_file:
        inputs_file = Path(args.inputs_file)
        if not inputs_file.exists():
            raise FileNotFoundError(f"Inputs file not found: {inputs_file}")

        with open(inputs_file, 'r') as f:
            file_inputs = yaml.load(f, Loader=StrictBoolLoader)
        if not isinstance(file_inputs, dict):
            raise ValueError(f"Inputs file must contain an object, got {type(file_inputs).__name__}")
        inputs.update(file_inputs)

    # Flags override the file
    for item in args.input or []:
        if '=' not in item:
            raise ValueError(f"Invalid input format: {item}. Expected KEY=VALUE")
        key, value = item.split('=', 1)
        try:
            inputs[key] = yaml.load(value, Loader=StrictBoolLoader) if value else ''
        except yaml.YAMLError:
            inputs[key] = value

    return inputs


def run_workflow(args: Namespace) -> int:
    """
    Run a workflow and print its result as JSON.

    Exit codes: 0 succeeded, 1 failed, 2 validation or usage error, 3 cancelled.
    """
    log_level = getattr(logging, args.log_level.upper())
    if args.debug:
        log_level = logging.DEBUG
    elif args.quiet:
        log_level = logging.ERROR
    elif args.verbose:
        log_level = logging.DEBUG

    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        stream=sys.stderr
    )

    try:
        document_path = Path(args.document).resolve()
        if not document_path.exists():
            logger.error(f"Workflow document not found: {document_path}")
            return 2

        logger.info(f"Loading workflow document: {document_path}")
        loader = WorkflowLoader()
        try:
            document = loader.load(document_path)
        except WorkflowValidationError as e:
            for error in e.errors:
                location = f" ({error.path})" if error.path else ""
                logger.error(f"Validation error{location}: {error.message}")
            return e.exit_code

        workflow_ids = [w['workflowId'] for w in document['workflows']]
        workflow_id = args.workflow_id or workflow_ids[0]
        if workflow_id not in workflow_ids:
            logger.error(f"Workflow '{workflow_id}' not found. Available: {workflow_ids}")
            return 2

        if args.dry_run:
            logger.info("[DRY RUN] Workflow document validation successful")
            return 0

        inputs = parse_inputs(args)
        cancel_token = CancellationToken(timeout_sec=args.timeout)

        with HttpxClient() as http_client:
            engine = WorkflowEngine(
                document,
                http_client=http_client,
                default_timeout_ms=args.request_timeout,
                default_retry_count=args.retry_count,
                default_retry_delay_ms=args.retry_delay,
            )
            result = engine.run(workflow_id, inputs, cancel_token)

        print(json.dumps(result.to_dict(), indent=2, default=str))
        return EXIT_CODES[result.status]

    except FileNotFoundError as e:
        logger.error(f"File not found: {e}")
        return 2
    except (ValueError, yaml.YAMLError) as e:
        logger.error(f"Invalid input: {e}")
        return 2
    except ApiflowError as e:
        logger.error(f"{e.error_type}: {e.message}")
        return 1
    except Exception as e:
        logger.error(f"Unexpected error: {e}", exc_info=True)
        return 1
