from procurement.models.rfp import RFP
from procurement.models.vendor import Vendor
from procurement.models.proposal import Proposal

__all__ = ["RFP", "Vendor", "Proposal"]
