from .effects import is_fixed_effect, partition_effects
from .moments import GaussianMoments, GammaMoments, PopulationMoments
from .parameter_block import BLOCK_ORDER, BlockRegistry, BlockTag, ParameterBlock
