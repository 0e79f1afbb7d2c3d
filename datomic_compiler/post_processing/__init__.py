# Copyright 2020-present Kensho Technologies, LLC.
from .result_processing import NullOrdering, process_results  # noqa
