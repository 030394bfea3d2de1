"""Face count and surface deviation of the quadric decimator for a range of
reduction ratios, measured on a marching-cubes sphere.

Usage::

    python scripts/decimation_sweep.py                  # radius 12, 5 ratios
    python scripts/decimation_sweep.py --radius 20 --steps 9

Requirements: numpy, scipy, scikit-image
"""
from __future__ import annotations

import argparse
import os
import sys
import time

# Ensure the repo root (parent of scripts/) is importable regardless of cwd
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import numpy as np

from vol2mesh import ScalarVolume, decimate, extract_surface


def _sphere_volume(radius: float) -> ScalarVolume:
    n = int(2 * radius + 6)
    z, y, x = np.mgrid[:n, :n, :n] - (n - 1) / 2.0
    return ScalarVolume(radius - np.sqrt(x * x + y * y + z * z))


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Sweep decimation ratios on a sphere and report face counts."
    )
    parser.add_argument("--radius", type=float, default=12.0, help="Sphere radius in voxels (default 12)")
    parser.add_argument("--steps", type=int, default=5, help="Number of ratios in [0, 0.9] (default 5)")
    args = parser.parse_args()

    volume = _sphere_volume(args.radius)
    base = extract_surface(volume, 0.0)
    centre = base.vertices.mean(axis=0)
    print(f"{'ratio':>6} {'faces':>8} {'max |r-R|':>10} {'seconds':>8}")
    for ratio in np.linspace(0.0, 0.9, args.steps):
        mesh = base.copy()
        t0 = time.perf_counter()
        decimate(mesh, float(ratio))
        dt = time.perf_counter() - t0
        dev = np.abs(np.linalg.norm(mesh.vertices - centre, axis=1) - args.radius).max()
        print(f"{ratio:6.2f} {mesh.n_faces:8d} {dev:10.4f} {dt:8.2f}")


if __name__ == "__main__":
    main()
