import json
from subderive.transforms.derivatives_transform import derivatives_frame, derivatives_per_account, load_details


def detail(block, derived, index, signer="5Signer"):
    return {
        "block": block,
        "extrinsic_index": 1,
        "signer": signer,
        "derivative_index": index,
        "derived_account": derived,
        "inner_call": "System.remark",
        "inner_call_args": ["0x00"],
    }


def test_derivatives_frame():
    df = derivatives_frame([detail(10, "5A", 0), detail(12, "5B", 1)])

    assert list(df.columns) == ["block", "extrinsic_index", "signer", "derivative_index", "derived_account",
                                "inner_call"]
    assert len(df) == 2
    assert list(df["block"]) == [10, 12]


def test_derivatives_per_account():
    details = [
        detail(10, "5A", 0),
        detail(15, "5B", 1),
        detail(20, "5A", 0),
        detail(30, "5A", 0),
    ]

    df = derivatives_per_account(details)

    assert list(df["derived_account"]) == ["5A", "5B"]
    first = df.iloc[0]
    assert first["matches"] == 3
    assert first["first_block"] == 10
    assert first["last_block"] == 30
    assert first["derivative_index"] == 0


def test_load_details(tmp_path):
    path = tmp_path / "derived_details-paseo.json"
    path.write_text(json.dumps([detail(1, "5A", 0)]))

    assert load_details(str(path))[0]["block"] == 1
