"""
結果服務

最終排名：依隊伍買到物品的 importanceScore 總和排序，
結果畫面直接使用伺服器算好的資料。
"""
from typing import Any, Dict, List

from sqlalchemy.orm import Session

from models import CatalogueEntry, ItemKind, Team


def get_standings(db: Session) -> List[Dict[str, Any]]:
    """
    取得排名（總分高者在前，同分比剩餘 purse，再比隊名）

    分數從目錄讀取而不是購買紀錄，修正過的 importanceScore 會立即反映。
    """
    scores = {item.id: item.importance_score for item in db.query(CatalogueEntry).all()}

    standings: List[Dict[str, Any]] = []
    for team in db.query(Team).all():
        items = []
        for bought in team.bought_items:
            items.append({
                "itemId": bought.item_id,
                "name": bought.name,
                "role": bought.role,
                "kind": bought.kind.value,
                "price": bought.price,
                "importanceScore": scores.get(bought.item_id, 0),
            })
        items.sort(key=lambda i: i["importanceScore"], reverse=True)

        standings.append({
            "teamId": team.id,
            "name": team.name,
            "members": team.member_ids,
            "purse": team.purse,
            "totalScore": sum(i["importanceScore"] for i in items),
            "players": sum(1 for b in team.bought_items if b.kind == ItemKind.PLAYER),
            "accessories": sum(1 for b in team.bought_items if b.kind == ItemKind.ACCESSORY),
            "boughtItems": items,
        })

    standings.sort(key=lambda s: (-s["totalScore"], -s["purse"], s["name"]))
    for rank, entry in enumerate(standings, start=1):
        entry["rank"] = rank
    return standings
