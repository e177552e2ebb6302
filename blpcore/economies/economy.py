"""Economy underlying the BLP model."""

from typing import List, Optional

from .. import exceptions
from ..configurations.integration import SimulationDraws
from ..primitives import ProductData
from ..utilities.basics import Array, Error, StringRepresentation, format_table, output


class Economy(StringRepresentation):
    """An economy underlying the BLP model: validated product data along with the simulation draws used to integrate
    over consumer heterogeneity. Both are immutable, so an economy is never changed after it has been initialized.
    """

    products: ProductData
    draws: Optional[SimulationDraws]
    unique_market_ids: Array
    N: int
    T: int
    K1: int
    K2: int
    MD: int
    I: int

    def __init__(self, product_data: ProductData, draws: Optional[SimulationDraws] = None) -> None:
        """Validate that the draws conform to the product data before storing both."""
        if not isinstance(product_data, ProductData):
            raise TypeError("product_data must be a ProductData instance.")
        if draws is not None and not isinstance(draws, SimulationDraws):
            raise TypeError("draws must be None or a SimulationDraws instance.")
        if draws is None and product_data.K2 > 0:
            raise exceptions.MissingComponentError("Simulation draws are required when X2 has columns.")
        if draws is not None and product_data.K2 > 0 and draws.dimensions != product_data.K2:
            raise exceptions.ShapeMismatchError(
                f"The simulation draws have {draws.dimensions} dimensions but X2 has {product_data.K2} columns."
            )

        # store the data and dimensions
        self.products = product_data
        self.draws = draws if product_data.K2 > 0 else None
        self.unique_market_ids = product_data.partition.unique_market_ids
        self.N = product_data.N
        self.T = product_data.T
        self.K1 = product_data.K1
        self.K2 = product_data.K2
        self.MD = product_data.MD
        self.I = 0 if self.draws is None else self.draws.I

    def __str__(self) -> str:
        """Format economy information as a string."""
        sections = [format_table(
            ["T", "N", "I", "K1", "K2", "MD"], [self.T, self.N, self.I, self.K1, self.K2, self.MD], title="Dimensions"
        )]
        formulations = [("X1: Linear Characteristics", self.products.X1_labels)]
        if self.K2 > 0:
            formulations.append(("X2: Nonlinear Characteristics", self.products.X2_labels))
        max_labels = max(len(l) for _, l in formulations)
        header = ["Column Indices:"] + [str(i) for i in range(max_labels)]
        data = [[name] + labels for name, labels in formulations]
        sections.append(format_table(header, *data, title="Formulations"))
        return "\n\n".join(sections)

    @staticmethod
    def _handle_errors(errors: List[Error], error_behavior: str = 'raise') -> None:
        """Either raise or output information about any errors."""
        if errors:
            if error_behavior == 'raise':
                raise exceptions.MultipleErrors(errors)
            output("")
            output(exceptions.MultipleErrors(errors))
            output("")
