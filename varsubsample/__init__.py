from .config import SubsampleConfig
from .tools import (
    AugurIndexer,
    AugurSubsampler,
    BiopythonIdLister,
    SeqkitIdLister,
    ToolError,
    Toolchain,
)
from .varsubsample import (
    SequenceFileOutputs,
    SubsamplePipeline,
    VariantData,
    VariantDataset,
    VariantResult,
    extract_metadata,
    extract_metadata_exact,
    relocate_index,
)
from . import check, extract, subsample
