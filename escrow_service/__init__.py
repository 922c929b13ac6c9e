"""
Marketplace Escrow Service

Order payment and escrow lifecycle for a mobile-money marketplace:
1. Capture a buyer's payment through a mobile-money provider
2. Hold the funds in escrow until delivery is confirmed
3. Release the escrow to the seller, or refund the buyer

Financial transitions are applied through a single compare-and-update
against the order store, so concurrent requests can never double-release
or double-refund an order.
"""

__version__ = "1.0.0"
