"""Law firm multiplex network dataset: loading and validation of the three tie layers."""

__version__ = "0.1.0"

from lawfirm_networks.loader import DataIntegrityError as DataIntegrityError
from lawfirm_networks.loader import load_dataset as load_dataset
from lawfirm_networks.models import LawFirmData as LawFirmData
