"""Run a saved model on inputs stored as .npy files.

    python run_model.py --model model.json --weights model_weights.buf \
        --metadata model_metadata.json --input input=x.npy

Paths may also be http(s) URLs. With --accelerate, layers that support
it run on the torch device (CUDA when available); --pipeline also keeps
their results on the device between layers.
"""

import argparse
import asyncio
import logging
import time

import numpy as np

from kerasrt import Model


def _parse_inputs(pairs: list[str]) -> dict[str, np.ndarray]:
    inputs = {}
    for pair in pairs:
        name, sep, path = pair.partition("=")
        if not sep:
            raise SystemExit(f"--input expects NAME=PATH, got {pair!r}")
        inputs[name] = np.load(path).astype(np.float32).ravel()
    return inputs


async def run(args: argparse.Namespace) -> None:
    model = Model(
        filepaths={"model": args.model, "weights": args.weights, "metadata": args.metadata},
        accelerate=args.accelerate,
        pipeline=args.pipeline,
    )

    t0 = time.perf_counter()
    await model.ready()
    load_ms = (time.perf_counter() - t0) * 1000
    print(model.graph.summary())
    print(f"Load + build: {load_ms:.1f}ms\n")

    inputs = _parse_inputs(args.input)
    for _ in range(args.repeat):
        t0 = time.perf_counter()
        outputs = await model.predict(inputs)
        infer_ms = (time.perf_counter() - t0) * 1000
        print(f"Inference: {infer_ms:.1f}ms")

    print()
    for name, data in outputs.items():
        preview = np.array2string(data[:8], precision=4)
        print(f"  {name}: {data.size} values  {preview}{' ...' if data.size > 8 else ''}")


def main():
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("--model", required=True)
    parser.add_argument("--weights", required=True)
    parser.add_argument("--metadata", required=True)
    parser.add_argument("--input", action="append", default=[],
                        help="NAME=path.npy (repeatable)")
    parser.add_argument("--accelerate", action="store_true")
    parser.add_argument("--pipeline", action="store_true")
    parser.add_argument("--repeat", type=int, default=1)
    parser.add_argument("--debug", action="store_true", help="Log per-layer execution")
    args = parser.parse_args()

    logging.basicConfig(level=logging.DEBUG if args.debug else logging.WARNING)
    asyncio.run(run(args))


if __name__ == "__main__":
    main()
