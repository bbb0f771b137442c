#!/usr/bin/env python3
"""
Command-Line Interface for the MySihat Clinic Terminal

Usage:
    python -m mysihat_app                          # Run REST API with default config
    python -m mysihat_app -c config.yaml           # Run with custom config
    python -m mysihat_app --codes                  # List code dictionaries
    python -m mysihat_app --read 920815-01-5234    # Show a card
    python -m mysihat_app --write 920815-01-5234 --diagnosis R51 --medication N02BA01
    python -m mysihat_app --dump 920815-01-5234 --out card.bin
    python -m mysihat_app --restore 880523-14-6789 --in card.bin
"""

import argparse
import os
import sys

from .capacity import compute_usage
from .codes import DIAGNOSIS, MEDICATION
from .controller import ClinicTerminal
from .errors import ChipError
from .models import ClinicConfig


def print_card(terminal: ClinicTerminal):
    """Print the loaded card, history and storage."""
    info = terminal.get_card_info()
    usage = compute_usage(terminal.chip)

    print("\n" + "=" * 60)
    print("PATIENT CARD")
    print("=" * 60)
    print(f"IC Number:    {info['identity']}")
    print(f"Name:         {info['name']}")
    print(f"Blood Type:   {info['blood_type']}")
    print(f"Allergies:    {', '.join(info['allergies']) or 'None'}")
    chronic = [f"{c['code']} ({c['name']})" for c in info["chronic"]]
    print(f"Chronic:      {', '.join(chronic) or 'None'}")
    print("-" * 60)
    print(f"Storage:      {usage.percent_used}% used")
    print(f"History:      {usage.history_bytes} bytes, {usage.visit_count}/{info['max_visit_count']} visits")
    print(f"Available:    {usage.available_kb}KB")
    print("-" * 60)

    history = terminal.get_history(newest_first=True)
    if not history:
        print("New Patient - No Previous Visits")
    for record in history:
        visit = terminal.describe_visit(record)
        print(
            f"{visit['display_date']}  {visit['diagnosis']:<28} {visit['medication']:<12} "
            f"{visit['chip_data']:<22} {visit['encoded_size']}B"
        )
    print("=" * 60)


def main():
    """Command-line entry point."""
    parser = argparse.ArgumentParser(
        description="MySihat Clinic Terminal",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m mysihat_app                            # Run REST API with default config
  python -m mysihat_app --seed                     # Register demo patients and exit
  python -m mysihat_app --read 920815-01-5234      # Show a card and exit
  python -m mysihat_app --write 920815-01-5234 --diagnosis R51 --medication N02BA01
  python -m mysihat_app --dump 920815-01-5234 --out card.bin
  python -m mysihat_app --restore 880523-14-6789 --in card.bin
  python -m mysihat_app --api --api-port 8000      # Custom API port
        """
    )
    parser.add_argument(
        "-c", "--config",
        default="config.yaml",
        help="Path to config file (default: config.yaml, built-in defaults if missing)",
    )
    parser.add_argument("--seed", action="store_true", help="Register demo patients and exit")
    parser.add_argument("--codes", action="store_true", help="List diagnosis and medication codes and exit")
    parser.add_argument("--read", metavar="IC", help="Show a card and exit")
    parser.add_argument("--write", metavar="IC", help="Write a visit to a card and exit")
    parser.add_argument("--diagnosis", help="ICD-10 code for --write")
    parser.add_argument("--medication", help="ATC code for --write")
    parser.add_argument("--date", help="Visit date YYMMDD for --write (default: today)")
    parser.add_argument("--dump", metavar="IC", help="Write a raw card image and exit")
    parser.add_argument("--out", default="card.bin", help="Output file for --dump (default: card.bin)")
    parser.add_argument("--restore", metavar="IC", help="Restore a card's visit history from a raw card image and exit")
    parser.add_argument("--in", dest="infile", default="card.bin", help="Input file for --restore (default: card.bin)")
    parser.add_argument("--api", action="store_true", help="Run REST API server (default action)")
    parser.add_argument("--api-host", default=None, help="API server host (default: from config or 0.0.0.0)")
    parser.add_argument("--api-port", type=int, default=None, help="API server port (default: from config or 8080)")

    args = parser.parse_args()

    # Load config
    try:
        if os.path.exists(args.config):
            config = ClinicConfig.from_yaml(args.config)
        elif args.config != "config.yaml":
            print(f"Error: Config file not found: {args.config}")
            sys.exit(1)
        else:
            config = ClinicConfig()
    except Exception as e:
        print(f"Error loading config: {e}")
        sys.exit(1)

    # One-shot commands do not simulate reader latency
    interactive = args.api or not any([args.seed, args.codes, args.read, args.write, args.dump, args.restore])
    if not interactive:
        config.read_delay = 0
        config.write_delay = 0

    terminal = ClinicTerminal(config)

    if args.seed:
        count = terminal.store.seed_demo_patients(overwrite=True)
        print(f"Registered {count} demo patient(s) in {config.db_path}")
        sys.exit(0)

    if args.codes:
        for title, kind in (("DIAGNOSIS (ICD-10)", DIAGNOSIS), ("MEDICATION (ATC)", MEDICATION)):
            print("\n" + title)
            print("-" * 40)
            for entry in terminal.get_codes(kind):
                print(f"{entry.code:<10} {entry.name}")
        sys.exit(0)

    try:
        if args.read:
            terminal.read_card(args.read)
            print_card(terminal)
            sys.exit(0)

        if args.write:
            if not args.diagnosis or not args.medication:
                print("Error: --write requires --diagnosis and --medication")
                sys.exit(1)
            terminal.read_card(args.write)
            terminal.stage_diagnosis(args.diagnosis)
            record, evicted, _ = terminal.write_visit(args.medication, args.date)
            print(f"\nWritten to chip: {terminal.describe_visit(record)['chip_data']} ({record.encoded_size}B)")
            if evicted:
                print(f"Evicted oldest visit from {evicted.display_date}")
            print_card(terminal)
            terminal.next_patient()
            sys.exit(0)

        if args.dump:
            size = terminal.export_card_image(args.dump, args.out)
            print(f"Card image written to {args.out} ({size} bytes)")
            sys.exit(0)

        if args.restore:
            chip = terminal.restore_card_image(args.restore, args.infile)
            print(f"Restored {len(chip.history)} visit(s) to {chip.identity} from {args.infile}")
            sys.exit(0)

    except (ChipError, OSError) as e:
        print(f"Error: {e}")
        sys.exit(1)

    terminal.run_with_api(api_host=args.api_host, api_port=args.api_port)


if __name__ == "__main__":
    main()
