"""
Base Counter Source Interface
=============================

ABC para los colaboradores que obtienen contadores del router.
Define el contrato explícito que el scheduler consume.
"""
from abc import ABC, abstractmethod
from typing import Dict, Union

Number = Union[int, float]


class CounterSource(ABC):
    """
    Clase base abstracta para counter sources.

    Contract:
    - fetch_counters: Retorna {nombre: valor numérico} (REQUIRED)
    - close: Libera recursos (OPTIONAL, default no-op)

    Implementaciones concretas:
    - FiberHomeCounterSource: scraping del HG6145F con Playwright
    """

    @abstractmethod
    def fetch_counters(self) -> Dict[str, Number]:
        """
        Obtiene los contadores del ciclo actual.

        Returns:
            Mapping plano nombre → valor crudo (bytes)

        Raises:
            FetchError: Navegación, login o respuesta malformada.
                Exceder el timeout propio del source también es FetchError.
        """
        pass

    def close(self) -> None:
        pass
