#!/usr/bin/env python3
# ---------------------------------------------------------------
# Scribble-based Colorization, command-line driver
#   – Levin et al., SIGGRAPH 2004 implementation –
# ---------------------------------------------------------------

import argparse
import logging
import sys

from colorize import DEFAULT_GAMMA, ColorizationError
from scribble import DEFAULT_EPS, DEFAULT_EROSIONS, process_scribble_file


def build_parser():
    parser = argparse.ArgumentParser(
        prog="scribble-colorize",
        description="Propagate colour scribbles across a grayscale image.",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter)
    parser.add_argument("image", help="Grayscale (or colour) source image.")
    parser.add_argument("scribbles", help="Same image with colour strokes painted on it.")
    parser.add_argument("output", help="Where to write the colorized result.")
    parser.add_argument("--gamma", type=float, default=DEFAULT_GAMMA,
                        help="Affinity kernel sharpness.")
    parser.add_argument("--eps", type=float, default=DEFAULT_EPS,
                        help="Summed channel difference above which a pixel counts as scribbled.")
    parser.add_argument("--erosions", type=int, default=DEFAULT_EROSIONS,
                        help="Number of 3x3 erosions applied to the scribble mask.")
    parser.add_argument("--mask", default=None,
                        help="Use this mask image (non-zero = scribbled) instead of extracting one.")
    parser.add_argument("--save-mask", default=None,
                        help="Also write the mask that was used to this path.")
    parser.add_argument("--quiet", action="store_true",
                        help="Only report warnings and errors; no progress bar.")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging.")
    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)

    if args.debug:
        level = logging.DEBUG
    elif args.quiet:
        level = logging.WARNING
    else:
        level = logging.INFO
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    try:
        process_scribble_file(
            args.image, args.scribbles, args.output,
            gamma=args.gamma, eps=args.eps, n_erosions=args.erosions,
            mask_path=args.mask, save_mask_path=args.save_mask,
            progress=not args.quiet,
        )
    except (ColorizationError, FileNotFoundError) as e:
        print("✖ Error:", e)
        return 1

    if not args.quiet:
        print("Saved →", args.output)
    return 0


if __name__ == "__main__":
    sys.exit(main())
