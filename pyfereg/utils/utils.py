import numpy as np
import pandas as pd


def get_data(N: int = 1000, seed: int = 1234, error_type: str = "1") -> pd.DataFrame:
    """
    Create a random example data set.

    The data contains a dependent variable `Y` driven by two covariates, three
    categorical fixed effects and a cluster variable, plus an endogenous
    regressor `X_endo` with two instruments `Z1` and `Z2`.

    Parameters
    ----------
    N : int, optional
        Number of observations. Default is 1000.
    seed : int, optional
        Seed for the random number generator. Default is 1234.
    error_type : str, optional
        Type of error term. Must be one of '1' (homoskedastic normal),
        '2' (heteroskedastic) or '3' (log-normal). Default is '1'.

    Returns
    -------
    pandas.DataFrame
        A pandas DataFrame with simulated data. The first rows contain missing
        values in `Y`, `X1` and `f1`.

    Raises
    ------
    ValueError
        If error_type is not '1', '2', or '3'.
    """
    rng = np.random.default_rng(seed)
    G = int(rng.choice(list(range(10, 20))))
    fe_dims = rng.choice(list(range(2, int(np.floor(np.sqrt(N))))), 3, True)

    X1 = rng.choice(range(3), N, True).astype(float)
    X2 = rng.normal(0, 3, N)
    f1 = rng.choice(fe_dims[0], N, True)
    f2 = rng.choice(fe_dims[1], N, True)
    f3 = rng.choice(fe_dims[2], N, True)

    alpha1 = rng.normal(0, 1, fe_dims[0])
    alpha2 = rng.normal(0, 1, fe_dims[1])
    alpha3 = rng.normal(0, 1, fe_dims[2])

    if error_type == "1":
        u = rng.normal(0, 1, N)
    elif error_type == "2":
        u = rng.normal(0, 1, N) * (1 + np.abs(X2))
    elif error_type == "3":
        u = np.exp(rng.normal(0, 1, N))
    else:
        raise ValueError("error_type needs to be '1', '2' or '3'.")

    Z1 = rng.normal(0, 1, N)
    Z2 = rng.normal(0, 1, N)
    v = rng.normal(0, 1, N)
    X_endo = Z1 + 0.5 * Z2 + v

    Y = (
        1.0
        + 0.5 * X1
        - 0.8 * X2
        + 1.5 * X_endo
        + alpha1[f1]
        + alpha2[f2]
        + alpha3[f3]
        + u
        + 0.7 * v
    )
    Y2 = Y + rng.normal(0, 5, N)

    df = pd.DataFrame(
        {
            "Y": Y,
            "Y2": Y2,
            "X1": X1,
            "X2": X2,
            "X_endo": X_endo,
            "Z1": Z1,
            "Z2": Z2,
            "f1": f1.astype("float64"),
            "f2": f2.astype("float64"),
            "f3": f3.astype("float64"),
            "group_id": rng.choice(G, N).astype("float64"),
            "weights": rng.uniform(0, 1, N),
        }
    )

    # add some NaN values
    df.loc[0, "Y"] = np.nan
    df.loc[1, "X1"] = np.nan
    df.loc[2, "f1"] = np.nan

    return df
