import logging
import os
from pathlib import Path
import sys
sys.path.append(str(Path(__file__).resolve().parent.parent))
from subderive.transforms.derivatives_transform import load_details, derivatives_per_account


def main():
    logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')

    chain = os.environ.get("CHAIN", "paseo")
    out_dir = os.environ.get("OUT_DIR", "data/derivatives")
    details_path = os.path.join(out_dir, f"derived_details-{chain}.json")
    if not os.path.exists(details_path):
        logging.error(f"missing {details_path}. Run bin/scan.py first. Exiting")
        sys.exit(1)

    logging.info("transforming...")
    df = derivatives_per_account(load_details(details_path))

    logging.info("saving...")
    file_path = os.path.join(out_dir, f"derivatives_per_account-{chain}.csv")
    df.to_csv(file_path, index=False)
    logging.info(f"wrote {len(df)} derived accounts to {file_path}")


if __name__ == "__main__":
    main()
