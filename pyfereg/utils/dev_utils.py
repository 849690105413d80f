import narwhals.stable.v1 as nw
import pandas as pd
from narwhals.typing import IntoDataFrame

DataFrameType = IntoDataFrame


def _narwhals_to_pandas(data: IntoDataFrame) -> pd.DataFrame:  # type: ignore
    return nw.from_native(data, eager_or_interchange_only=True).to_pandas()
