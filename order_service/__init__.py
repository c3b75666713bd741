"""Order Service — 注文ライフサイクルと在庫整合性"""
