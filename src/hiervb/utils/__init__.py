from .logger import LoggerManager
from .linalg import inv, logdet, gaussian_entropy, gamma_entropy, kl_gamma
