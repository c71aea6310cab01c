"""
Testbench: run the LPC codec over every WAV file of a directory.

    lpc-codec-eval --dir samples/ --order 10 --loss_rate 0.1

Reconstructions are written as <stem>_reconstructed.wav and the SNR of every
signal is logged.
"""
import argparse
import logging
import multiprocessing
import sys
from pathlib import Path

from lpc_codec_evaluation.audio import WavDirectorySource, WavSink
from lpc_codec_evaluation.classes import CodecConfig
from lpc_codec_evaluation.constants import (
    ORDER_DEFAULT, LOSS_RATE_DEFAULT, BITRATE_DEFAULT, GRANULARITIES, GRANULARITY_DEFAULT,
    MISMATCH_POLICIES, MISMATCH_POLICY_DEFAULT, STATUS_FAILED, STATUS_DEGRADED, PAYLOAD_EXTENSION, PLOT_SUFFIX,
)
from lpc_codec_evaluation.evaluator import Evaluator
from lpc_codec_evaluation.methods import plot_reconstruction
from lpc_codec_evaluation.serialize import dumps_payload

logger = logging.getLogger(__name__)


def parse_args(args=None, namespace=None):
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(prog="lpc-codec-eval", description="Evaluate LPC coding under entropy coding and channel loss")
    parser.add_argument("--dir", type=str, required=True, help="Directory containing WAV files.")
    parser.add_argument("--order", type=int, default=ORDER_DEFAULT, help="LPC order.")
    parser.add_argument("--loss_rate", type=float, default=LOSS_RATE_DEFAULT, help="Probability that a unit of the coded stream is lost.")
    parser.add_argument("--bitrate", type=int, default=BITRATE_DEFAULT, help="Bitrate in kbps (reported, not enforced).")
    parser.add_argument("--granularity", type=str, default=GRANULARITY_DEFAULT, choices=GRANULARITIES, help="Unit erased by the channel.")
    parser.add_argument("--mismatch_policy", type=str, default=MISMATCH_POLICY_DEFAULT, choices=MISMATCH_POLICIES, help="How to score a reconstruction whose length differs from the original.")
    parser.add_argument("--open_loop", action="store_true", help="Quantize the residual after filtering instead of inside the prediction loop.")
    parser.add_argument("--seed", type=int, default=None, help="Seed for the channel simulator.")
    parser.add_argument("-j", "--jobs", type=int, default=1, help=f"Number of workers for multiprocessing (this machine has {multiprocessing.cpu_count()} CPUs).")
    parser.add_argument("--output_dir", type=str, default=None, help="Where to write outputs. Defaults to next to each input file.")
    parser.add_argument("--no_write", action="store_true", help="Do not write reconstructed WAV files.")
    parser.add_argument("--save_payload", action="store_true", help=f"Also write the coded streams (before loss) as <stem>{PAYLOAD_EXTENSION}.")
    parser.add_argument("--plot", action="store_true", help=f"Save a <stem>{PLOT_SUFFIX} comparison figure per signal.")
    parser.add_argument("--profile", action="store_true", help="Measure peak memory of encode and decode.")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging.")
    args = parser.parse_args(args=args, namespace=namespace)
    if args.jobs < 1:
        parser.error("--jobs must be at least 1")
    return args


def main(args=None) -> int:
    args = parse_args(args)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO,
                        format="%(asctime)s - %(levelname)s - %(message)s")

    try:
        config = CodecConfig(order=args.order, loss_rate=args.loss_rate, bitrate=args.bitrate,
                             granularity=args.granularity, mismatch_policy=args.mismatch_policy,
                             closed_loop=not args.open_loop, seed=args.seed)
    except ValueError as exc:
        logger.error("%s", exc)
        return 2

    signals = list(WavDirectorySource(args.dir))
    if not signals:
        logger.warning("No WAV files found in %s", args.dir)
        return 0

    evaluator = Evaluator(config, profile=args.profile)
    results = evaluator.evaluate_many(
        [signal.samples for signal in signals],
        identifiers=[signal.identifier for signal in signals],
        sample_rates=[signal.sample_rate for signal in signals],
        jobs=args.jobs,
    )

    sink = WavSink(args.output_dir)
    if args.output_dir is not None:
        Path(args.output_dir).mkdir(parents=True, exist_ok=True)
    for signal, result in zip(signals, results):
        if result["status"] == STATUS_FAILED:
            continue
        if not args.no_write:
            sink.write(result["reconstructed"], signal.sample_rate, signal.identifier)
        if args.save_payload:
            sink.output_path(signal.identifier, PAYLOAD_EXTENSION).write_bytes(dumps_payload(result["coded"]))
        if args.plot and len(result["reconstructed"]) > 0:
            plot_reconstruction(signal.samples, result["reconstructed"], signal.sample_rate,
                                path=str(sink.output_path(signal.identifier, PLOT_SUFFIX)),
                                show=False, title=signal.identifier)

    failed = [result["identifier"] for result in results if result["status"] == STATUS_FAILED]
    degraded = sum(result["status"] == STATUS_DEGRADED for result in results)
    logger.info("Processed %d signal(s): %d failed, %d degraded", len(results), len(failed), degraded)
    for identifier in failed:
        logger.info("Failed: %s", identifier)
    return 0


if __name__ == "__main__":
    sys.exit(main())
