"""
Strategy Parameters - Cromosoma per Algoritmo Genetico

Definisce la struttura dei parametri della strategia DCA che verranno
ottimizzati dall'algoritmo genetico. Ogni istanza di StrategyParams
rappresenta un "cromosoma" nel processo evolutivo ed è composta da:

1. Scalari fissi (importo base, moltiplicatore massimo, take profit, spacing)
2. Blocchi feature tipizzati, attivi solo se la feature è abilitata
   (oscillatori, medie mobili, spacing adattivo, TP dinamico)

BaseConfig raccoglie invece gli input fissi del backtest (capitale,
commissioni, modalità cycle) e l'insieme di feature abilitate, che non è
una dimensione di ricerca.
"""

from __future__ import annotations
from dataclasses import dataclass, field, fields, replace
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple, Type
import json

from dca_optimizer.errors import ConfigurationError


class Feature(str, Enum):
    """Feature opzionali della strategia (ordine = ordine canonico dei geni)"""
    RSI = "rsi"
    MACD = "macd"
    BOLLINGER = "bb"
    EMA = "ema"
    HULL_MA = "hullma"
    MFI = "mfi"
    KELTNER = "keltner"
    OBV = "obv"
    STOCH_RSI = "stochrsi"
    VOLATILITY_SPACING = "volatility_adaptive"
    DYNAMIC_TP = "dynamic_tp"

    @property
    def is_signal_source(self) -> bool:
        return self not in (Feature.VOLATILITY_SPACING, Feature.DYNAMIC_TP)

    @classmethod
    def parse(cls, name: Any) -> Feature:
        if isinstance(name, Feature):
            return name
        key = str(name).strip().lower()
        key = FEATURE_ALIASES.get(key, key)
        try:
            return cls(key)
        except ValueError:
            valid = ", ".join(f.value for f in cls)
            raise ConfigurationError(f"Unknown feature '{name}' (valid: {valid})") from None


FEATURE_ALIASES = {
    "bollinger": "bb",
    "bollinger_bands": "bb",
    "hull_ma": "hullma",
    "hma": "hullma",
    "kc": "keltner",
    "keltner_channels": "keltner",
    "stoch_rsi": "stochrsi",
    "stochastic_rsi": "stochrsi",
    "atr": "volatility_adaptive",
    "volatility": "volatility_adaptive",
}

DEFAULT_FEATURES = (Feature.RSI, Feature.MACD, Feature.BOLLINGER, Feature.EMA)


# ============================================================================
# BLOCCHI FEATURE
# ============================================================================

@dataclass
class RSIBlock:
    period: int = 14
    oversold: float = 30.0
    overbought: float = 70.0


@dataclass
class MACDBlock:
    fast_period: int = 12
    slow_period: int = 26
    signal_period: int = 9


@dataclass
class BollingerBlock:
    period: int = 20
    std_dev: float = 2.0


@dataclass
class EMABlock:
    period: int = 50


@dataclass
class HullMABlock:
    period: int = 20


@dataclass
class MFIBlock:
    period: int = 14
    oversold: float = 20.0
    overbought: float = 80.0


@dataclass
class KeltnerBlock:
    period: int = 20
    multiplier: float = 2.0


@dataclass
class OBVBlock:
    trend_threshold: float = 0.01


@dataclass
class StochRSIBlock:
    period: int = 14
    oversold: float = 20.0
    overbought: float = 80.0


@dataclass
class VolatilitySpacingBlock:
    volatility_sensitivity: float = 2.0
    atr_period: int = 14
    level_multiplier: float = 1.15


@dataclass
class DynamicTPBlock:
    volatility_multiplier: float = 1.0
    min_tp_percent: float = 0.01
    max_tp_percent: float = 0.05


@dataclass(frozen=True)
class FeatureSpec:
    """Voce del registro: classe del blocco + coppie ordinate (lower, upper)"""
    feature: Feature
    block_cls: Type[Any]
    pairs: Tuple[Tuple[str, str], ...] = ()

    @property
    def field_names(self) -> Tuple[str, ...]:
        return tuple(f.name for f in fields(self.block_cls))

    def new_block(self, values: Optional[Dict[str, Any]] = None) -> Any:
        values = values or {}
        unknown = set(values) - set(self.field_names)
        if unknown:
            raise ConfigurationError(
                f"Unknown field(s) {sorted(unknown)} for feature '{self.feature.value}'"
            )
        return self.block_cls(**values)


FEATURE_REGISTRY: Dict[Feature, FeatureSpec] = {
    Feature.RSI: FeatureSpec(Feature.RSI, RSIBlock, (("oversold", "overbought"),)),
    Feature.MACD: FeatureSpec(Feature.MACD, MACDBlock, (("fast_period", "slow_period"),)),
    Feature.BOLLINGER: FeatureSpec(Feature.BOLLINGER, BollingerBlock),
    Feature.EMA: FeatureSpec(Feature.EMA, EMABlock),
    Feature.HULL_MA: FeatureSpec(Feature.HULL_MA, HullMABlock),
    Feature.MFI: FeatureSpec(Feature.MFI, MFIBlock, (("oversold", "overbought"),)),
    Feature.KELTNER: FeatureSpec(Feature.KELTNER, KeltnerBlock),
    Feature.OBV: FeatureSpec(Feature.OBV, OBVBlock),
    Feature.STOCH_RSI: FeatureSpec(Feature.STOCH_RSI, StochRSIBlock, (("oversold", "overbought"),)),
    Feature.VOLATILITY_SPACING: FeatureSpec(Feature.VOLATILITY_SPACING, VolatilitySpacingBlock),
    Feature.DYNAMIC_TP: FeatureSpec(
        Feature.DYNAMIC_TP, DynamicTPBlock, (("min_tp_percent", "max_tp_percent"),)
    ),
}


def normalize_features(names: Iterable[Any]) -> Tuple[Feature, ...]:
    """Converte nomi/alias in Feature, senza duplicati, in ordine canonico"""
    parsed = {Feature.parse(name) for name in names}
    return tuple(f for f in Feature if f in parsed)


@dataclass(frozen=True)
class FieldRef:
    """Indirizzo di un gene: scalare (feature=None) o campo di un blocco"""
    feature: Optional[Feature]
    name: str

    @property
    def key(self) -> str:
        """Chiave nel ParameterCatalog"""
        if self.feature is None:
            return self.name
        return f"{self.feature.value}.{self.name}"


SCALAR_FIELDS = ("max_multiplier", "tp_percent", "base_threshold", "threshold_multiplier")


@dataclass
class StrategyParams:
    """
    Cromosoma per Algoritmo Genetico - Parametri Strategia DCA

    `blocks` mappa ogni Feature abilitata al suo blocco tipizzato; una feature
    assente dal dizionario è disabilitata e i suoi campi non partecipano
    alla ricerca.
    """

    # ========================================================================
    # 1. SCALARI FISSI
    # ========================================================================
    base_amount: float = 40.0               # Importo per ingresso (non ottimizzato)
    max_multiplier: float = 3.0             # Limite moltiplicatore importo
    tp_percent: float = 0.02                # Take profit del ciclo
    base_threshold: float = 0.02            # Distanza minima tra ingressi
    threshold_multiplier: float = 1.0       # Progressione distanza per livello

    # ========================================================================
    # 2. BLOCCHI FEATURE
    # ========================================================================
    blocks: Dict[Feature, Any] = field(default_factory=dict)

    @classmethod
    def create(cls, features: Iterable[Any], **scalars: Any) -> StrategyParams:
        """Crea un vettore con i valori di default per ogni feature abilitata"""
        blocks = {f: FEATURE_REGISTRY[f].new_block() for f in normalize_features(features)}
        return cls(blocks=blocks, **scalars)

    @property
    def enabled_features(self) -> Tuple[Feature, ...]:
        return tuple(f for f in Feature if f in self.blocks)

    def has(self, feature: Feature) -> bool:
        return feature in self.blocks

    def block(self, feature: Feature) -> Any:
        """Blocco tipizzato della feature, None se disabilitata"""
        return self.blocks.get(feature)

    def fields(self) -> List[FieldRef]:
        """Geni attivi in ordine canonico (indipendente dall'hashing dei set)"""
        refs = [FieldRef(None, name) for name in SCALAR_FIELDS
                if not (name == "threshold_multiplier" and self.has(Feature.VOLATILITY_SPACING))]
        for feature in self.enabled_features:
            refs.extend(FieldRef(feature, name) for name in FEATURE_REGISTRY[feature].field_names)
        return refs

    def pairs(self) -> List[Tuple[FieldRef, FieldRef]]:
        """Coppie ordinate (lower, upper) dei blocchi abilitati"""
        result = []
        for feature in self.enabled_features:
            for lower, upper in FEATURE_REGISTRY[feature].pairs:
                result.append((FieldRef(feature, lower), FieldRef(feature, upper)))
        return result

    def get(self, ref: FieldRef) -> Any:
        if ref.feature is None:
            return getattr(self, ref.name)
        return getattr(self.blocks[ref.feature], ref.name)

    def set(self, ref: FieldRef, value: Any) -> None:
        """Scrive un gene. Usare solo su copie non ancora valutate."""
        if ref.feature is None:
            setattr(self, ref.name, value)
        else:
            setattr(self.blocks[ref.feature], ref.name, value)

    def copy(self) -> StrategyParams:
        return replace(self, blocks={f: replace(b) for f, b in self.blocks.items()})

    def to_dict(self) -> Dict[str, Any]:
        """Converte in dizionario per serializzazione"""
        data: Dict[str, Any] = {name: getattr(self, name) for name in ("base_amount",) + SCALAR_FIELDS}
        data["enabled_features"] = [f.value for f in self.enabled_features]
        for feature in self.enabled_features:
            block = self.blocks[feature]
            data[feature.value] = {name: getattr(block, name)
                                   for name in FEATURE_REGISTRY[feature].field_names}
        return data

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> StrategyParams:
        """Crea istanza da dizionario (inverso di to_dict)"""
        features = normalize_features(data.get("enabled_features", ()))
        blocks = {f: FEATURE_REGISTRY[f].new_block(data.get(f.value)) for f in features}
        scalars = {name: data[name] for name in ("base_amount",) + SCALAR_FIELDS if name in data}
        return cls(blocks=blocks, **scalars)

    @classmethod
    def from_json(cls, json_str: str) -> StrategyParams:
        return cls.from_dict(json.loads(json_str))

    def __repr__(self) -> str:
        features = ",".join(f.value for f in self.enabled_features)
        return (f"StrategyParams(tp={self.tp_percent:.3f}, threshold={self.base_threshold:.3f}, "
                f"mult={self.max_multiplier:.2f}, features=[{features}])")


@dataclass
class BaseConfig:
    """
    Input fissi del backtest e insieme di feature abilitate

    Validato in __post_init__: ogni incoerenza solleva ConfigurationError
    prima che l'ottimizzazione inizi.
    """
    initial_balance: float = 500.0
    commission: float = 0.0005
    min_order_qty: float = 0.0
    cycle: bool = True
    tp_percent: float = 0.02
    use_tp_levels: bool = False
    tp_levels: int = 5
    base_amount: float = 40.0
    max_multiplier: float = 3.0
    base_threshold: float = 0.02
    threshold_multiplier: float = 1.0
    min_confidence: float = 0.6
    enabled_features: Tuple[Feature, ...] = ()
    track_regimes: bool = False

    def __post_init__(self):
        features = normalize_features(self.enabled_features or DEFAULT_FEATURES)
        if not any(f.is_signal_source for f in features):
            raise ConfigurationError(
                "enabled_features must include at least one signal source "
                f"(got: {[f.value for f in features]})"
            )
        self.enabled_features = features

        if self.initial_balance <= 0:
            raise ConfigurationError(f"initial_balance must be > 0 (got {self.initial_balance})")
        if self.base_amount <= 0:
            raise ConfigurationError(f"base_amount must be > 0 (got {self.base_amount})")
        if not 0.0 <= self.commission < 1.0:
            raise ConfigurationError(f"commission must be in [0, 1) (got {self.commission})")
        if self.min_order_qty < 0:
            raise ConfigurationError(f"min_order_qty must be >= 0 (got {self.min_order_qty})")
        if self.cycle and self.tp_percent <= 0:
            raise ConfigurationError("tp_percent must be > 0 when cycle mode is enabled")
        if self.use_tp_levels and not self.cycle:
            raise ConfigurationError("use_tp_levels requires cycle mode")
        if self.tp_levels < 1:
            raise ConfigurationError(f"tp_levels must be >= 1 (got {self.tp_levels})")
        if not 0.0 < self.min_confidence <= 1.0:
            raise ConfigurationError(f"min_confidence must be in (0, 1] (got {self.min_confidence})")

    def base_params(self) -> StrategyParams:
        """Vettore baseline: scalari della configurazione + blocchi di default"""
        return StrategyParams.create(
            self.enabled_features,
            base_amount=self.base_amount,
            max_multiplier=self.max_multiplier,
            tp_percent=self.tp_percent,
            base_threshold=self.base_threshold,
            threshold_multiplier=self.threshold_multiplier,
        )

    def to_dict(self) -> Dict[str, Any]:
        data = {f.name: getattr(self, f.name) for f in fields(self)}
        data["enabled_features"] = [f.value for f in self.enabled_features]
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> BaseConfig:
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ConfigurationError(f"Unknown base configuration key(s): {sorted(unknown)}")
        return cls(**data)

    @classmethod
    def from_config(cls) -> BaseConfig:
        """
        Crea istanza con i parametri attuali da config.py
        Utile come baseline per confronto con GA
        """
        import config

        return cls(
            initial_balance=getattr(config, "INITIAL_BALANCE", 500.0),
            commission=getattr(config, "COMMISSION", 0.0005),
            min_order_qty=getattr(config, "MIN_ORDER_QTY", 0.0),
            cycle=getattr(config, "CYCLE_MODE", True),
            use_tp_levels=getattr(config, "USE_TP_LEVELS", True) and getattr(config, "CYCLE_MODE", True),
            tp_levels=getattr(config, "TP_LEVELS", 5),
            tp_percent=getattr(config, "TP_PERCENT", 0.02),
            base_amount=getattr(config, "BASE_AMOUNT", 40.0),
            max_multiplier=getattr(config, "MAX_MULTIPLIER", 3.0),
            base_threshold=getattr(config, "PRICE_THRESHOLD", 0.02),
            threshold_multiplier=getattr(config, "PRICE_THRESHOLD_MULTIPLIER", 1.0),
            min_confidence=getattr(config, "MIN_CONFIDENCE", 0.6),
            enabled_features=tuple(getattr(config, "ENABLED_FEATURES", DEFAULT_FEATURES)),
            track_regimes=getattr(config, "TRACK_REGIMES", False),
        )
