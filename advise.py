"""
Recommend 3D-print settings for an OBJ mesh.

Usage:
    $ python advise.py --model advisor.onnx --mesh part.obj --functional --friction
    $ python advise.py --config configs/advisor.yml --mesh part.obj --detail
    $ python advise.py --show_history
"""

import argparse
import os
import sys
from pathlib import Path

from easydict import EasyDict as edict

from printadvisor.config import easydict_to_dict, load_config, merge_config, pick
from printadvisor.general import Profiler, determine_device
from printadvisor.history import HistoryStore, format_history
from printadvisor.inference import (
    InferenceDispatcher,
    ModelLoadError,
    ModelSession,
    ResultCache,
    TensorContract,
)
from printadvisor.mesh import compute_features, load_obj
from printadvisor.recommend import (
    Recommender,
    RequirementProfile,
    recommendation_contract,
)
from printadvisor.utils import get_logger, setup_logging

REQUIREMENT_FLAGS = (
    "functional",
    "decorative",
    "force",
    "friction",
    "weight_support",
    "outdoor",
    "detail",
)


def parse_args(argv=None):
    parser = argparse.ArgumentParser(
        description="Recommend print settings for a 3D mesh using a trained model."
    )

    parser.add_argument(
        "--config", type=str, default=None, help="Path to config.yml/.json"
    )

    # Model parameters
    parser.add_argument(
        "--model",
        type=str,
        default=None,
        help="Model file (.onnx for ONNX Runtime, .torchscript/.pts for TorchScript)",
    )
    parser.add_argument(
        "--device",
        type=str,
        default=None,
        choices=["auto", "cpu", "cuda"],
        help="Device to run inference on (auto will choose cuda if available)",
    )
    parser.add_argument(
        "--warmup_runs", type=int, default=None, help="Warm-up passes at load time"
    )

    # Input
    parser.add_argument("--mesh", type=str, default=None, help="OBJ file to analyse.")

    # Requirements
    requirements = parser.add_argument_group("requirements")
    requirements.add_argument(
        "--functional", action="store_true", default=None, help="Part is functional."
    )
    requirements.add_argument(
        "--decorative", action="store_true", default=None, help="Part is decorative."
    )
    requirements.add_argument(
        "--force", action="store_true", default=None, help="Part takes mechanical force."
    )
    requirements.add_argument(
        "--friction", action="store_true", default=None, help="Part is subject to friction."
    )
    requirements.add_argument(
        "--weight_support", action="store_true", default=None, help="Part carries weight."
    )
    requirements.add_argument(
        "--outdoor", action="store_true", default=None, help="Part is used outdoors."
    )
    requirements.add_argument(
        "--detail", action="store_true", default=None, help="Part needs fine detail."
    )

    # Dispatch
    parser.add_argument(
        "--max_concurrency",
        type=int,
        default=None,
        help="Maximum simultaneous inference calls.",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Seconds a request may wait in the queue.",
    )
    parser.add_argument(
        "--cache_size", type=int, default=None, help="Result cache entries."
    )

    # History
    parser.add_argument(
        "--history_file", type=str, default=None, help="History JSON file."
    )
    parser.add_argument(
        "--no_history",
        action="store_true",
        default=None,
        help="Do not record this run in the history.",
    )
    parser.add_argument(
        "--show_history",
        action="store_true",
        default=None,
        help="Print the recorded history and exit.",
    )

    # Logging parameters
    parser.add_argument(
        "--log_level",
        type=str,
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging level.",
    )
    parser.add_argument(
        "--log_to_file", action="store_true", default=None, help="Also log to logs/."
    )

    return parser.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)

    cfg = load_config(args.config) if args.config else {}
    config = edict(merge_config(args, cfg))

    setup_logging(
        enabled=True,
        log_level=config.log_level,
        log_to_file=bool(config.get("log_to_file")),
    )
    logger = get_logger("printadvisor.advise")
    logger.debug(f"Resolved config: {easydict_to_dict(config)}")

    if config.get("show_history"):
        print(format_history(HistoryStore(config.get("history_file")).load()))
        return 0

    if not config.get("model"):
        logger.error("model is required (via --model or config)")
        return 1
    if not config.get("mesh"):
        logger.error("mesh is required (via --mesh or config)")
        return 1

    model_path = os.path.realpath(config.model)
    if not os.path.exists(model_path):
        logger.error(f"Model file not found: {model_path}")
        raise FileNotFoundError(f"Model file not found: {model_path}")

    device = determine_device(config.get("device"))
    contract = (
        TensorContract.from_config(config.contract)
        if config.get("contract")
        else recommendation_contract()
    )
    profilers = {"analysis": Profiler(), "inference": Profiler()}

    with profilers["analysis"]:
        analysis = compute_features(load_obj(config.mesh))
    logger.info(
        f"Mesh analysed in {profilers['analysis'].elapsed_time * 1000:.2f} ms "
        f"({analysis.vertex_count} vertices, {analysis.face_count} faces)"
    )

    profile = RequirementProfile(
        **{flag: bool(config.get(flag)) for flag in REQUIREMENT_FLAGS}
    )
    logger.info(f"Requirements: {profile}")

    session = ModelSession(
        contract, device, warmup_runs=int(pick(config.get("warmup_runs"), 1))
    )
    try:
        session.load(model_path)
    except ModelLoadError as e:
        logger.error(f"Failed to load model: {e}")
        raise

    dispatcher = InferenceDispatcher(
        session,
        max_concurrency=int(pick(config.get("max_concurrency"), 1)),
        cache=ResultCache(max_entries=int(pick(config.get("cache_size"), 32))),
        default_timeout=config.get("timeout"),
    )
    with session, dispatcher:
        recommender = Recommender(dispatcher)
        with profilers["inference"]:
            recommendation = recommender.recommend(analysis.features, profile)

    logger.info(
        f"Inference completed in {profilers['inference'].elapsed_time * 1000:.2f} ms"
    )

    print(analysis.describe())
    print()
    print(recommendation.format_summary())
    print(recommendation.format_details())

    if not config.get("no_history"):
        payload = recommendation.to_history_payload(analysis.features)
        HistoryStore(config.get("history_file")).append(Path(config.mesh).name, payload)

    return 0


if __name__ == "__main__":
    sys.exit(main())
