from typing import Dict, List, Tuple


def rank_by_magnitude(scores: Dict[str, float]) -> List[Tuple[str, float, int]]:
    """
    Orders (name, score) by |score| descending, ties by name ascending,
    and assigns contiguous ranks 1..k.
    """
    ordered = sorted(scores.items(), key=lambda item: (-abs(item[1]), item[0]))
    return [(name, score, i + 1) for i, (name, score) in enumerate(ordered)]
