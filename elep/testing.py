"""
Synthetic household survey with the same columns as the real PUMS extract,
including the ones the default cleaning spec drops. Used by the test suite.
"""

import numpy as np
import pandas as pd

HFL_LEVELS = ["Bottled gas", "Electricity", "Fuel oil", "Utility gas"]
TEN_LEVELS = ["Owned free and clear", "Owned with mortgage", "Rented"]
YBL_LEVELS = ["1939 or earlier", "1940-1959", "1960-1979", "1980-1999", "2000 or later"]
BLD_VALUES = ["One-family house detached", "One-family house attached", "2 Apartments",
              "10-19 Apartments", "50 or more apartments", "Mobile home"]

HFL_EFFECT = {"Bottled gas": 10.0, "Electricity": 55.0, "Fuel oil": 5.0, "Utility gas": 0.0}


def make_household_frame(n=400, seed=0, noise=20.0, ybl_levels=YBL_LEVELS):
    rng = np.random.RandomState(seed)

    n_persons = rng.randint(1, 7, n)
    bedrooms = rng.randint(0, 5, n)
    rooms = bedrooms + rng.randint(1, 5, n)
    r18 = rng.randint(0, 2, n)
    r60 = rng.randint(0, 2, n)
    fulp = rng.uniform(0, 150, n).round(0)
    gasp = rng.uniform(0, 200, n).round(0)
    hfl = rng.choice(HFL_LEVELS, n)
    ten = rng.choice(TEN_LEVELS, n)
    ybl = rng.choice(ybl_levels, n)
    bld = rng.choice(BLD_VALUES, n)

    elep = (30 + 12 * n_persons + 9 * rooms + 4 * bedrooms + 15 * r18 + 0.2 * gasp
            + np.array([HFL_EFFECT[h] for h in hfl]) + rng.normal(0, noise, n))

    return pd.DataFrame({
        "SERIALNO": [f"2019HU{i:07d}" for i in range(n)],
        "ELEP": elep.round(0),
        "NP": n_persons,
        "BDSP": bedrooms,
        "RMSP": rooms,
        "R18": r18,
        "R60": r60,
        "FULP": fulp,
        "GASP": gasp,
        "HFL": hfl,
        "TEN": ten,
        "YBL": ybl,
        "BLD": bld,
        "ACR": rng.choice(["House on less than one acre", "House on one to less than ten acres"], n),
        "TYPE": 1,
        "VALP": rng.uniform(50_000, 900_000, n).round(-3),
    })
