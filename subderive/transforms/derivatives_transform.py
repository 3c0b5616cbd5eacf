import json
import pandas as pd

COLUMNS = ["block", "extrinsic_index", "signer", "derivative_index", "derived_account", "inner_call"]


def load_details(file_path) -> list:
    """
    Read a `derived_details-<chain>.json` file as written by the scan.
    """
    with open(file_path, encoding="UTF-8") as source:
        return json.load(source)


def derivatives_frame(details: list) -> pd.DataFrame:
    """
    One row per match, without the inner call arguments.

    :param details: the match dicts of a scan
    :type details: list
    """
    rows = [[detail[column] for column in COLUMNS] for detail in details]
    return pd.DataFrame(rows, columns=COLUMNS)


def derivatives_per_account(details: list) -> pd.DataFrame:
    """
    Aggregate matches per derived account: how often it was used and in which block range.

    :param details: the match dicts of a scan
    :type details: list
    :return: columns `derived_account`, `signer`, `derivative_index`, `matches`, `first_block`, `last_block`,
        sorted by `matches` descending
    :rtype: pd.DataFrame
    """
    df = derivatives_frame(details)
    grouped = df.groupby(["derived_account", "signer", "derivative_index"], as_index=False).agg(
        matches=("block", "size"),
        first_block=("block", "min"),
        last_block=("block", "max"),
    )
    return grouped.sort_values(["matches", "first_block"], ascending=[False, True]).reset_index(drop=True)
