from phenozonal.handlers.collection import CollectionFuser, PERIODS_PER_YEAR
