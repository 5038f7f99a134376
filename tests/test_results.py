import numpy as np
import pandas as pd
import pytest

from binned_fitting import FitResultTable, Parameter, ParameterRegistry
from binned_fitting.results import build_fit_result


def _registry() -> ParameterRegistry:
    reg = ParameterRegistry()
    a = Parameter("d1.A", range_min=0.0, range_max=20.0)
    a.best_value, a.best_error = 10.0, 3.0
    b = Parameter("d1.B", range_min=0.0, range_max=20.0)
    b.best_value, b.best_error = 5.0, 2.0
    c = Parameter("global.C", range_min=0.0, range_max=1.0, fixed=True)
    c.best_value = 1.0
    for p in (a, b, c):
        reg.insert(p)
    return reg


def test_build_fit_result_drops_fixed_rows_from_covariance():
    reg = _registry()
    cov = np.array([[9.0, 1.5, 0.0], [1.5, 4.0, 0.0], [0.0, 0.0, 0.0]])
    res = build_fit_result(reg, status=0, min_nll=12.5, edm=1e-5, cov_qual=3, cov=cov, engine="iminuit")

    assert res.ok
    assert res.free_names == ("d1.A", "d1.B")
    np.testing.assert_allclose(res.cov, cov[:2, :2])
    corr = res.correlation()
    np.testing.assert_allclose(np.diag(corr), 1.0)
    assert corr[0, 1] == pytest.approx(0.25)

    a = res.params["d1.A"]
    assert a.value == 10.0 and a.error == 3.0
    assert a["stderr"] == 3.0
    assert res.params[2].fixed
    assert res.params["global.C"].at_limit
    assert a.u.std_dev == pytest.approx(3.0)
    assert (a.u - res.params["d1.B"].u).std_dev == pytest.approx(np.sqrt(9.0 + 4.0 - 3.0))
    assert res.params.as_dict() == {"d1.A": 10.0, "d1.B": 5.0, "global.C": 1.0}
    assert "d1.A" in res.summary()


def test_result_without_covariance():
    res = build_fit_result(_registry(), status=4, min_nll=1.0, edm=0.0, cov_qual=0)
    assert not res.ok
    assert res.cov is None and res.correlation() is None
    assert res.params["d1.B"].u.nominal_value == 5.0


def test_table_columns_and_schema():
    reg = _registry()
    table = FitResultTable.for_registry(reg)
    assert table.columns == (
        "absNLLMin", "minuitStatus", "d1.A", "d1.AErr", "d1.B", "d1.BErr", "global.C", "global.CErr",
    )
    res = build_fit_result(reg, status=0, min_nll=3.0, edm=0.0, cov_qual=3)
    table.append(res)
    table.append(res.as_row())
    assert len(table) == 2

    with pytest.raises(ValueError):
        table.append({"absNLLMin": 1.0, "minuitStatus": 0})

    df = table.to_dataframe()
    assert list(df.columns) == list(table.columns)
    assert df["minuitStatus"].dtype.kind == "i"
    assert df["d1.AErr"].tolist() == [3.0, 3.0]


def test_table_csv_append(tmp_path):
    reg = _registry()
    res = build_fit_result(reg, status=0, min_nll=3.0, edm=0.0, cov_qual=3)
    path = tmp_path / "out.csv"

    table = FitResultTable.for_registry(reg)
    table.append(res)
    table.write_csv(path)
    table.write_csv(path, append=True)
    df = FitResultTable.read_csv(path)
    assert len(df) == 2
    assert list(df.columns) == list(table.columns)

    table.write_csv(path)
    assert len(pd.read_csv(path)) == 1

    other = FitResultTable(["x"])
    with pytest.raises(ValueError, match="columns"):
        other.write_csv(path, append=True)
